"""
Migration: Initial schema for the fuel price crawler.

Creates the catalog tables (regions, sub_regions), stations, the
append-only price_changes ledger, scraper_runs and the crawl lease row.
"""

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Region",
            fields=[
                ("id", models.IntegerField(primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "regions",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="SubRegion",
            fields=[
                ("id", models.IntegerField(primary_key=True, serialize=False)),
                (
                    "upstream_id",
                    models.IntegerField(help_text="Sub-region id as published upstream"),
                ),
                ("name", models.CharField(max_length=150)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "region",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sub_regions",
                        to="pricecrawler.region",
                    ),
                ),
            ],
            options={
                "db_table": "sub_regions",
                "ordering": ["id"],
                "indexes": [
                    models.Index(fields=["region"], name="idx_sub_region_region"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Station",
            fields=[
                (
                    "permit_number",
                    models.CharField(max_length=50, primary_key=True, serialize=False),
                ),
                ("name", models.CharField(max_length=255)),
                ("address", models.TextField(blank=True)),
                ("brand", models.CharField(blank=True, max_length=50, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "region",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stations",
                        to="pricecrawler.region",
                    ),
                ),
                (
                    "sub_region",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stations",
                        to="pricecrawler.subregion",
                    ),
                ),
            ],
            options={
                "db_table": "stations",
                "ordering": ["permit_number"],
                "indexes": [
                    models.Index(
                        fields=["region", "sub_region"], name="idx_station_location"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PriceChange",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "fuel_type",
                    models.CharField(
                        choices=[
                            ("regular", "Regular"),
                            ("premium", "Premium"),
                            ("diesel", "Diesel"),
                        ],
                        max_length=12,
                    ),
                ),
                (
                    "raw_descriptor",
                    models.TextField(help_text="Original upstream product descriptor"),
                ),
                ("price", models.DecimalField(decimal_places=2, max_digits=7)),
                (
                    "changed_at",
                    models.DateTimeField(
                        help_text="When the price changed (source-reported or detection time)"
                    ),
                ),
                ("detected_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "station",
                    models.ForeignKey(
                        db_column="station_permit_number",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="price_changes",
                        to="pricecrawler.station",
                    ),
                ),
            ],
            options={
                "db_table": "price_changes",
                "ordering": ["-changed_at", "-id"],
                "indexes": [
                    models.Index(
                        fields=["station", "fuel_type", "-changed_at"],
                        name="idx_station_fuel_changed",
                    ),
                    models.Index(fields=["changed_at"], name="idx_price_changed_at"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ScraperRun",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="running",
                        max_length=10,
                    ),
                ),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("regions_processed", models.IntegerField(default=0)),
                ("sub_regions_processed", models.IntegerField(default=0)),
                ("stations_found", models.IntegerField(default=0)),
                ("new_stations_added", models.IntegerField(default=0)),
                ("price_changes_detected", models.IntegerField(default=0)),
                ("unchanged_prices", models.IntegerField(default=0)),
                ("unmapped_descriptors", models.IntegerField(default=0)),
                ("malformed_entries", models.IntegerField(default=0)),
                ("errors", models.JSONField(blank=True, default=list)),
                ("dry_run", models.BooleanField(default=False)),
            ],
            options={
                "db_table": "scraper_runs",
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(
                        fields=["started_at", "status"], name="idx_run_started_status"
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "running")),
                        fields=("status",),
                        name="one_running_scraper_run",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CrawlLease",
            fields=[
                (
                    "name",
                    models.CharField(max_length=50, primary_key=True, serialize=False),
                ),
                ("acquired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="pricecrawler.scraperrun",
                    ),
                ),
            ],
            options={
                "db_table": "crawl_leases",
            },
        ),
    ]
