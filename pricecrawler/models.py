"""
Django models for the fuel price crawler.

Models: Region, SubRegion, Station, PriceChange, ScraperRun, CrawlLease

PriceChange is an append-only ledger: rows are only ever inserted, one per
detected change, so the full price history of every station stays
reconstructable. ScraperRun keeps one row per crawl with its counters and
a structured error list.
"""

from datetime import timedelta

from django.db import models
from django.db.models import Q
from django.utils import timezone

from pricecrawler.utils.fuel_types import FuelType


class ScraperRunStatus(models.TextChoices):
    """Lifecycle state of a crawl run."""

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class Region(models.Model):
    """Top-level administrative unit (upstream-assigned id)."""

    id = models.IntegerField(primary_key=True)
    name = models.CharField(max_length=100)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "regions"
        ordering = ["id"]

    def __str__(self):
        return f"{self.name} ({self.id})"


class SubRegion(models.Model):
    """
    Second-level administrative unit.

    Upstream sub-region ids are only unique within their region, so the
    primary key is the composite region_id * 1000 + upstream_id.
    """

    COMPOSITE_FACTOR = 1000

    id = models.IntegerField(primary_key=True)
    region = models.ForeignKey(
        Region, on_delete=models.CASCADE, related_name="sub_regions"
    )
    upstream_id = models.IntegerField(help_text="Sub-region id as published upstream")
    name = models.CharField(max_length=150)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sub_regions"
        ordering = ["id"]
        indexes = [
            models.Index(fields=["region"], name="idx_sub_region_region"),
        ]

    def __str__(self):
        return f"{self.name} ({self.id})"

    @classmethod
    def composite_id(cls, region_id: int, upstream_id: int) -> int:
        return int(region_id) * cls.COMPOSITE_FACTOR + int(upstream_id)


class Station(models.Model):
    """
    A permitted retail outlet.

    The permit number is the only identity. Descriptive fields are
    last-write-wins so upstream renames are absorbed by the upsert.
    """

    permit_number = models.CharField(max_length=50, primary_key=True)
    name = models.CharField(max_length=255)
    address = models.TextField(blank=True)
    region = models.ForeignKey(
        Region, on_delete=models.PROTECT, related_name="stations"
    )
    sub_region = models.ForeignKey(
        SubRegion, on_delete=models.PROTECT, related_name="stations"
    )
    brand = models.CharField(max_length=50, blank=True, null=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "stations"
        ordering = ["permit_number"]
        indexes = [
            models.Index(fields=["region", "sub_region"], name="idx_station_location"),
        ]

    def __str__(self):
        return f"{self.name} ({self.permit_number})"


class PriceChange(models.Model):
    """
    One detected price change for a (station, fuel type).

    Append-only: never updated or deleted in the normal path.
    """

    id = models.BigAutoField(primary_key=True)
    station = models.ForeignKey(
        Station,
        on_delete=models.PROTECT,
        related_name="price_changes",
        db_column="station_permit_number",
    )
    fuel_type = models.CharField(
        max_length=12,
        choices=[(c.value, c.label) for c in FuelType if c != FuelType.UNRECOGNIZED],
    )
    raw_descriptor = models.TextField(help_text="Original upstream product descriptor")
    price = models.DecimalField(max_digits=7, decimal_places=2)
    changed_at = models.DateTimeField(
        help_text="When the price changed (source-reported or detection time)"
    )
    detected_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "price_changes"
        ordering = ["-changed_at", "-id"]
        indexes = [
            models.Index(
                fields=["station", "fuel_type", "-changed_at"],
                name="idx_station_fuel_changed",
            ),
            models.Index(fields=["changed_at"], name="idx_price_changed_at"),
        ]

    def __str__(self):
        return f"{self.station_id} {self.fuel_type} {self.price} @ {self.changed_at}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not kwargs.get("force_insert"):
            raise ValueError("PriceChange records are append-only")
        super().save(*args, **kwargs)


class ScraperRun(models.Model):
    """
    One full traversal of the region hierarchy.

    At most one run can be RUNNING at a time; the partial unique
    constraint backs up the lease check done by the run ledger.
    """

    id = models.BigAutoField(primary_key=True)
    status = models.CharField(
        max_length=10,
        choices=ScraperRunStatus.choices,
        default=ScraperRunStatus.RUNNING,
    )

    # Timing
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    # Counters
    regions_processed = models.IntegerField(default=0)
    sub_regions_processed = models.IntegerField(default=0)
    stations_found = models.IntegerField(default=0)
    new_stations_added = models.IntegerField(default=0)
    price_changes_detected = models.IntegerField(default=0)
    unchanged_prices = models.IntegerField(default=0)
    unmapped_descriptors = models.IntegerField(default=0)
    malformed_entries = models.IntegerField(default=0)

    # Error Details
    errors = models.JSONField(default=list, blank=True)

    dry_run = models.BooleanField(default=False)

    class Meta:
        db_table = "scraper_runs"
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["started_at", "status"], name="idx_run_started_status"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["status"],
                condition=Q(status="running"),
                name="one_running_scraper_run",
            ),
        ]

    def __str__(self):
        return f"Run {self.id} ({self.status})"

    @property
    def duration_seconds(self):
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_finalized(self) -> bool:
        return self.status != ScraperRunStatus.RUNNING

    @classmethod
    def last_completed(cls):
        return (
            cls.objects.filter(status=ScraperRunStatus.COMPLETED, dry_run=False)
            .order_by("-completed_at")
            .first()
        )


class CrawlLease(models.Model):
    """
    Lease row guarding run allocation.

    A single row per lease name; the ledger locks it inside a transaction
    before allocating a ScraperRun.
    """

    name = models.CharField(max_length=50, primary_key=True)
    run = models.ForeignKey(
        ScraperRun,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    acquired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "crawl_leases"

    def __str__(self):
        return f"Lease {self.name} (run={self.run_id})"

    def is_expired(self, ttl: timedelta, now=None) -> bool:
        if self.acquired_at is None:
            return True
        now = now or timezone.now()
        return now - self.acquired_at > ttl
