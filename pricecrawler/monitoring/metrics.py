"""
Prometheus metrics for the price crawler.

Metrics are derived from the ScraperRun ledger on each scrape rather than
kept in process memory, since runs execute in Celery workers while the
metrics endpoint is served by the web process.

    fuel_crawler_runs_total{status}
    fuel_crawler_run_active
    fuel_crawler_last_run_counter{counter}
    fuel_crawler_last_run_errors
    fuel_crawler_last_run_duration_seconds
    fuel_crawler_last_success_timestamp_seconds
    fuel_crawler_last_run_short_circuited_regions
"""

import logging
from typing import List, Optional

from django.db.models import Count
from prometheus_client import generate_latest
from prometheus_client.core import CollectorRegistry, CounterMetricFamily, GaugeMetricFamily

from pricecrawler.models import ScraperRun, ScraperRunStatus
from pricecrawler.services.crawl_types import COUNTER_FIELDS

logger = logging.getLogger(__name__)

SHORT_CIRCUIT_ERROR = "REGION_SHORT_CIRCUITED"


def last_finished_run() -> Optional[ScraperRun]:
    """Most recent completed or failed run, dry runs included."""
    return (
        ScraperRun.objects.exclude(status=ScraperRunStatus.RUNNING)
        .order_by("-started_at", "-id")
        .first()
    )


def short_circuited_regions(run: ScraperRun) -> List[int]:
    return [
        entry.get("region_id")
        for entry in (run.errors or [])
        if isinstance(entry, dict) and entry.get("type") == SHORT_CIRCUIT_ERROR
    ]


class ScraperRunCollector:
    """Collector reading the run ledger at scrape time."""

    def collect(self):
        runs_total = CounterMetricFamily(
            "fuel_crawler_runs",
            "Crawl runs by status",
            labels=["status"],
        )
        by_status = dict(
            ScraperRun.objects.values_list("status").annotate(total=Count("id")).order_by()
        )
        for status in ScraperRunStatus.values:
            runs_total.add_metric([status], by_status.get(status, 0))
        yield runs_total

        active = ScraperRun.objects.filter(status=ScraperRunStatus.RUNNING).exists()
        yield GaugeMetricFamily(
            "fuel_crawler_run_active",
            "1 while a crawl run is in progress",
            value=1 if active else 0,
        )

        last_success = ScraperRun.last_completed()
        if last_success is not None:
            yield GaugeMetricFamily(
                "fuel_crawler_last_success_timestamp_seconds",
                "Completion time of the last successful non-dry run",
                value=last_success.completed_at.timestamp(),
            )

        run = last_finished_run()
        if run is None:
            return

        counters = GaugeMetricFamily(
            "fuel_crawler_last_run_counter",
            "Counters of the last finished run",
            labels=["counter"],
        )
        for counter in COUNTER_FIELDS:
            counters.add_metric([counter], getattr(run, counter))
        yield counters

        yield GaugeMetricFamily(
            "fuel_crawler_last_run_errors",
            "Error entries recorded by the last finished run",
            value=len(run.errors or []),
        )
        yield GaugeMetricFamily(
            "fuel_crawler_last_run_short_circuited_regions",
            "Regions short-circuited in the last finished run",
            value=len(short_circuited_regions(run)),
        )
        if run.duration_seconds is not None:
            yield GaugeMetricFamily(
                "fuel_crawler_last_run_duration_seconds",
                "Wall time of the last finished run",
                value=run.duration_seconds,
            )


def render_metrics() -> bytes:
    """Prometheus text exposition of the run ledger."""
    registry = CollectorRegistry()
    registry.register(ScraperRunCollector())
    return generate_latest(registry)
