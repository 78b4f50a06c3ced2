"""
Django admin configuration for the price crawler.

Stations and the catalog are browsable; price changes and crawl runs are
read-only (the price ledger is append-only and runs are written only by
the crawler).
"""

import json

from django.contrib import admin
from django.utils.html import format_html

from pricecrawler.models import (
    PriceChange,
    Region,
    ScraperRun,
    Station,
    SubRegion,
)


class ReadOnlyAdminMixin:
    """Disable add / change / delete from the admin."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Region)
class RegionAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "sub_region_count", "updated_at"]
    search_fields = ["name"]
    ordering = ["id"]

    def sub_region_count(self, obj):
        return obj.sub_regions.count()
    sub_region_count.short_description = "Sub-regions"


@admin.register(SubRegion)
class SubRegionAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "region", "upstream_id", "updated_at"]
    list_filter = ["region"]
    search_fields = ["name"]
    ordering = ["id"]


@admin.register(Station)
class StationAdmin(admin.ModelAdmin):
    """
    Admin interface for stations.

    Stations are keyed by permit number; descriptive fields follow upstream.
    """

    list_display = [
        "permit_number",
        "name",
        "brand",
        "region",
        "sub_region",
        "is_active",
        "updated_at",
    ]
    list_filter = ["is_active", "region", "brand"]
    search_fields = ["permit_number", "name", "address"]
    readonly_fields = ["permit_number", "created_at", "updated_at"]
    raw_id_fields = ["sub_region"]
    ordering = ["permit_number"]


@admin.register(PriceChange)
class PriceChangeAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin interface for the price change ledger (read-only).
    """

    list_display = [
        "id",
        "station",
        "fuel_type",
        "price",
        "changed_at",
        "detected_at",
    ]
    list_filter = [
        "fuel_type",
        ("changed_at", admin.DateFieldListFilter),
    ]
    search_fields = ["station__permit_number", "station__name", "raw_descriptor"]
    raw_id_fields = ["station"]
    ordering = ["-changed_at", "-id"]


@admin.register(ScraperRun)
class ScraperRunAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin interface for crawl runs.

    Read-only view of run status, counters and the structured error list.
    """

    list_display = [
        "id",
        "status_badge",
        "dry_run",
        "started_at",
        "completed_at",
        "regions_processed",
        "sub_regions_processed",
        "price_changes_detected",
        "error_count",
        "duration_display",
    ]
    list_filter = [
        "status",
        "dry_run",
        ("started_at", admin.DateFieldListFilter),
    ]
    ordering = ["-started_at"]

    fieldsets = (
        ("Run Information", {
            "fields": ("id", "status", "dry_run"),
        }),
        ("Timing", {
            "fields": ("started_at", "completed_at"),
        }),
        ("Counters", {
            "fields": (
                "regions_processed",
                "sub_regions_processed",
                "stations_found",
                "new_stations_added",
                "price_changes_detected",
                "unchanged_prices",
                "unmapped_descriptors",
                "malformed_entries",
            ),
        }),
        ("Errors", {
            "fields": ("errors_pretty",),
            "classes": ("collapse",),
        }),
    )
    readonly_fields = ["errors_pretty"]

    def status_badge(self, obj):
        """Display status as colored badge."""
        colors = {
            "running": "#007bff",
            "completed": "#28a745",
            "failed": "#dc3545",
        }
        color = colors.get(obj.status, "#6c757d")
        return format_html(
            '<span style="background-color: {}; color: white; '
            'padding: 2px 8px; border-radius: 4px;">{}</span>',
            color, obj.status.title()
        )
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def error_count(self, obj):
        return len(obj.errors or [])
    error_count.short_description = "Errors"

    def errors_pretty(self, obj):
        return format_html("<pre>{}</pre>", json.dumps(obj.errors or [], indent=2))
    errors_pretty.short_description = "Error list"

    def duration_display(self, obj):
        """Display run duration in human-readable format."""
        if obj.duration_seconds:
            seconds = obj.duration_seconds
            if seconds < 60:
                return f"{seconds:.1f}s"
            elif seconds < 3600:
                return f"{seconds / 60:.1f}m"
            else:
                return f"{seconds / 3600:.1f}h"
        return "-"
    duration_display.short_description = "Duration"
