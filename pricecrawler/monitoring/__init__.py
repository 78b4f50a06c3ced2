"""
Monitoring for the price crawler.

- Sentry error tracking with region / sub-region context
- Structured error entries for the run's error list
- Prometheus metrics derived from the run ledger (metrics.py)
"""

from .sentry_integration import add_crawl_breadcrumb, capture_crawl_error
from .error_logger import build_error_entry, log_error_with_context

__all__ = [
    "add_crawl_breadcrumb",
    "capture_crawl_error",
    "build_error_entry",
    "log_error_with_context",
]
