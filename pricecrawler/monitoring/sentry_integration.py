"""
Sentry error tracking integration for the price crawler.

- Sentry SDK is initialised in settings/base.py when SENTRY_DSN is set;
  without a client every call below is a no-op
- Breadcrumbs carry crawl context (run, region, sub-region)
- Secrets (webhook secret, signatures, tokens) are filtered from event data

Usage:
    from pricecrawler.monitoring import capture_crawl_error

    try:
        result = await fetcher.fetch(region, sub_region)
    except UpstreamError as e:
        capture_crawl_error(e, run_id=run_id, region_id=region.id)
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Sensitive fields to filter from Sentry events
SENSITIVE_FIELDS = {
    "authorization",
    "api_key",
    "password",
    "secret",
    "signature",
    "token",
}


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values of sensitive keys, recursing into nested dicts.
    """
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = _filter_sensitive_data(value)
        else:
            filtered[key] = value

    return filtered


def add_crawl_breadcrumb(
    message: str,
    run_id: Any = None,
    region_id: Optional[int] = None,
    sub_region_id: Optional[int] = None,
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """Add a breadcrumb describing a crawl step."""
    breadcrumb_data = {
        "run_id": run_id,
        "region_id": region_id,
        "sub_region_id": sub_region_id,
    }
    if extra_data:
        breadcrumb_data.update(_filter_sensitive_data(extra_data))

    try:
        sentry_sdk.add_breadcrumb(
            category="crawl",
            message=message,
            level=level,
            data=breadcrumb_data,
        )
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")


def capture_crawl_error(
    error: Exception,
    run_id: Any = None,
    region_id: Optional[int] = None,
    sub_region_id: Optional[int] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture a crawl error to Sentry with region / sub-region tags.
    """
    add_crawl_breadcrumb(
        message=f"Error: {type(error).__name__}",
        run_id=run_id,
        region_id=region_id,
        sub_region_id=sub_region_id,
        level="error",
        extra_data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("crawler.run_id", str(run_id))
            if region_id is not None:
                scope.set_tag("crawler.region_id", region_id)
            if sub_region_id is not None:
                scope.set_tag("crawler.sub_region_id", sub_region_id)
            if extra_context:
                scope.set_extra("crawl_context", _filter_sensitive_data(extra_context))

            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
