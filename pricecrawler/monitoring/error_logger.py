"""
Structured error entries for crawl failures.

Every scoped failure becomes one JSON entry on the run's error list:

    {
        "type": "TRANSIENT_UPSTREAM_ERROR",
        "scope": "sub_region",
        "message": "HTTP 503 from https://...",
        "region_id": 9,
        "sub_region_id": 9002,
        "endpoint": "https://.../Petroliferos",
        "status_code": 503,
        "attempts": 4,
        "occurred_at": "2025-01-01T05:03:12+00:00",
    }

log_error_with_context() also logs the failure and reports it to Sentry.
"""

import logging
from typing import Any, Dict, Optional

from django.utils import timezone

from pricecrawler.exceptions import CrawlerError, UpstreamError
from pricecrawler.monitoring.sentry_integration import capture_crawl_error

logger = logging.getLogger(__name__)


def build_error_entry(
    error: Exception,
    scope: str,
    region_id: Optional[int] = None,
    sub_region_id: Optional[int] = None,
    error_type: Optional[str] = None,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the JSON entry recorded on ScraperRun.errors.

    Args:
        error: The exception (or None for synthesized entries)
        scope: "run", "region" or "sub_region"
        region_id: Region the failure belongs to
        sub_region_id: Sub-region the failure belongs to
        error_type: Override for the entry type
        message: Override for the message
        details: Extra JSON-serializable context
    """
    if isinstance(error, UpstreamError):
        entry = error.to_dict()
    elif isinstance(error, CrawlerError):
        entry = {"type": error.error_type, "message": str(error)}
    elif error is not None:
        entry = {"type": "PROCESSING_ERROR", "message": f"{type(error).__name__}: {error}"}
    else:
        entry = {"type": "UNKNOWN", "message": ""}

    if error_type:
        entry["type"] = error_type
    if message:
        entry["message"] = message

    entry["scope"] = scope
    if region_id is not None:
        entry["region_id"] = region_id
    if sub_region_id is not None:
        entry["sub_region_id"] = sub_region_id
    if details:
        entry["details"] = details
    entry["occurred_at"] = timezone.now().isoformat()

    return {key: value for key, value in entry.items() if value is not None}


def log_error_with_context(
    error: Exception,
    scope: str,
    run_id: Any = None,
    region_id: Optional[int] = None,
    sub_region_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Log a scoped failure, report it to Sentry and return its error entry.
    """
    entry = build_error_entry(
        error,
        scope=scope,
        region_id=region_id,
        sub_region_id=sub_region_id,
    )

    location = f"region {region_id}" if sub_region_id is None else (
        f"region {region_id} / sub-region {sub_region_id}"
    )
    if isinstance(error, UpstreamError):
        logger.error(f"Run {run_id}: {entry['type']} in {location}: {entry['message']}")
    else:
        logger.exception(f"Run {run_id}: unexpected error in {location}: {error}")

    capture_crawl_error(
        error,
        run_id=run_id,
        region_id=region_id,
        sub_region_id=sub_region_id,
        extra_context={"entry": entry},
    )
    return entry
