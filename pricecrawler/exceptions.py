"""
Error taxonomy for the price crawler.

Upstream errors are raised by the resilience layer once its retry policy
is exhausted (or immediately for permanent failures). The orchestrator
turns them into scoped entries on the run's error list; only
RunFatalError ends a run early.
"""

from typing import Any, Dict, Optional


class CrawlerError(Exception):
    """Base class for all price crawler errors."""

    error_type = "CRAWLER_ERROR"


class UpstreamError(CrawlerError):
    """An upstream HTTP call failed."""

    error_type = "UPSTREAM_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "message": self.message,
            "endpoint": self.url,
            "status_code": self.status_code,
            "attempts": self.attempts,
        }


class TransientUpstreamError(UpstreamError):
    """Timeout, 5xx or connection failure. Retried by policy."""

    error_type = "TRANSIENT_UPSTREAM_ERROR"
    retryable = True


class RateLimitedError(UpstreamError):
    """HTTP 429. Retried honoring the Retry-After hint when present."""

    error_type = "RATE_LIMITED"
    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class PermanentUpstreamError(UpstreamError):
    """Non-429 4xx response or an unusable payload. Never retried."""

    error_type = "PERMANENT_UPSTREAM_ERROR"


class MalformedRecordError(CrawlerError):
    """A single upstream price entry could not be mapped."""

    error_type = "MALFORMED_RECORD"


class UnmappedFuelTypeError(CrawlerError):
    """A product descriptor did not match any fuel type rule."""

    error_type = "UNMAPPED_FUEL_TYPE"

    def __init__(self, descriptor: str):
        super().__init__(f"Unrecognized fuel descriptor: {descriptor!r}")
        self.descriptor = descriptor


class RunFatalError(CrawlerError):
    """The crawl cannot continue at all (e.g. region catalog unreachable)."""

    error_type = "RUN_FATAL"


class CrawlAlreadyRunningError(CrawlerError):
    """Another crawl run currently holds the lease."""

    error_type = "ALREADY_RUNNING"

    def __init__(self, active_run_id=None):
        super().__init__(f"Crawl run {active_run_id} is already running")
        self.active_run_id = active_run_id


class RunAlreadyFinalizedError(CrawlerError):
    """A crawl run may only be finalized once."""

    error_type = "ALREADY_FINALIZED"


class CrawlAbortedError(CrawlerError):
    """The run was stopped externally (signal, shutdown) before finishing."""

    error_type = "ABORTED"
