"""
Upstream fetching with resilience.

- upstream_client: httpx client with error classification
- resilience: retry policy, Retry-After parsing, region circuit breaker
"""

from .resilience import RegionCircuitBreaker, RetryPolicy, call_with_retry, parse_retry_after
from .upstream_client import UpstreamClient, classify_response

__all__ = [
    "RegionCircuitBreaker",
    "RetryPolicy",
    "call_with_retry",
    "parse_retry_after",
    "UpstreamClient",
    "classify_response",
]
