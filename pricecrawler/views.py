"""
Price crawler views.

Health check plus the metrics and status endpoints used for monitoring
and load balancer checks.
"""

from datetime import timedelta

from django.conf import settings
from django.db import connection
from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from prometheus_client import CONTENT_TYPE_LATEST

from pricecrawler.models import ScraperRun, ScraperRunStatus
from pricecrawler.monitoring.metrics import last_finished_run, render_metrics, short_circuited_regions
from pricecrawler.services.crawl_types import COUNTER_FIELDS


def health_check(request):
    """
    Health check endpoint for the price crawler.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy", "stale" or "unhealthy"
        - database: "connected" or "error"
        - last_completed_run: id and completion time of the last completed run
        - data_age_hours: hours since the last completed run
        - active_run: id of the running crawl, if any

    Returns:
        JsonResponse: HTTP 200 for healthy or stale, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"

    if database_status != "connected":
        return JsonResponse(
            {"status": "unhealthy", "database": database_status},
            status=503,
        )

    last_run = ScraperRun.last_completed()
    active_run_id = (
        ScraperRun.objects.filter(status=ScraperRunStatus.RUNNING)
        .values_list("id", flat=True)
        .first()
    )

    data_age_hours = None
    last_completed = None
    if last_run is not None:
        age = timezone.now() - last_run.completed_at
        data_age_hours = round(age.total_seconds() / 3600, 2)
        last_completed = {
            "id": last_run.id,
            "completed_at": last_run.completed_at.isoformat(),
        }

    stale_after = timedelta(hours=getattr(settings, "FUEL_CRAWLER_DATA_STALE_HOURS", 25))
    if last_run is None or timezone.now() - last_run.completed_at > stale_after:
        status = "stale"

    response_data = {
        "status": status,
        "database": database_status,
        "last_completed_run": last_completed,
        "data_age_hours": data_age_hours,
        "active_run": active_run_id,
    }

    return JsonResponse(response_data, status=http_status)


def metrics(request):
    """
    Prometheus metrics endpoint.

    Endpoint: GET /api/metrics/
    No authentication required (for scrapers inside the cluster).
    """
    return HttpResponse(render_metrics(), content_type=CONTENT_TYPE_LATEST)


def crawler_status(request):
    """
    Crawler status endpoint.

    Endpoint: GET /api/status/
    No authentication required.

    Response fields:
        - state: "running" or "idle"
        - active_run: id, started_at and elapsed_seconds of the running crawl
        - last_run: summary of the last finished run, dry runs included
    """
    now = timezone.now()

    active = ScraperRun.objects.filter(status=ScraperRunStatus.RUNNING).first()
    active_run = None
    if active is not None:
        active_run = {
            "id": active.id,
            "started_at": active.started_at.isoformat(),
            "elapsed_seconds": round((now - active.started_at).total_seconds(), 1),
            "dry_run": active.dry_run,
        }

    run = last_finished_run()
    last_run = None
    if run is not None:
        last_run = {
            "id": run.id,
            "status": run.status,
            "started_at": run.started_at.isoformat(),
            "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            "duration_seconds": run.duration_seconds,
            "dry_run": run.dry_run,
            "counts": {counter: getattr(run, counter) for counter in COUNTER_FIELDS},
            "errors_total": len(run.errors or []),
            "short_circuited_regions": short_circuited_regions(run),
        }

    return JsonResponse({
        "state": "running" if active is not None else "idle",
        "active_run": active_run,
        "last_run": last_run,
    })
