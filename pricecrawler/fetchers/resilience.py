"""
Retry, backoff and short-circuit policy for upstream calls.

Every upstream call goes through call_with_retry():
- Transient failures (timeouts, 5xx, connection resets) are retried with
  exponential backoff plus jitter, up to RetryPolicy.max_retries.
- 429 responses honor the Retry-After hint (capped) when present, else the
  backoff schedule.
- Other 4xx responses fail immediately.
- Each attempt is bounded by a per-call timeout.

RegionCircuitBreaker stops a region after repeated consecutive sub-region
failures so a regional outage is not retry-stormed.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from django.conf import settings

from pricecrawler.exceptions import (
    RateLimitedError,
    TransientUpstreamError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Retry parameters for upstream calls."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.25
    max_retry_after: float = 60.0
    timeout: Optional[float] = 30.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Build a policy from the FUEL_CRAWLER_* settings."""
        return cls(
            max_retries=getattr(settings, "FUEL_CRAWLER_MAX_RETRIES", 3),
            base_delay=getattr(settings, "FUEL_CRAWLER_RETRY_BASE_DELAY", 1.0),
            max_delay=getattr(settings, "FUEL_CRAWLER_RETRY_MAX_DELAY", 30.0),
            multiplier=getattr(settings, "FUEL_CRAWLER_RETRY_MULTIPLIER", 2.0),
            jitter=getattr(settings, "FUEL_CRAWLER_RETRY_JITTER", 0.25),
            max_retry_after=getattr(settings, "FUEL_CRAWLER_MAX_RETRY_AFTER", 60.0),
            timeout=getattr(settings, "FUEL_CRAWLER_REQUEST_TIMEOUT", 30.0),
        )

    def backoff_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Exponential backoff for a 0-indexed attempt.

        base * multiplier ** attempt, capped at max_delay, then spread by
        +/- jitter (a fraction of the delay).
        """
        rng = rng or random
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            delay += delay * rng.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def delay_for(
        self,
        error: UpstreamError,
        attempt: int,
        rng: Optional[random.Random] = None,
    ) -> float:
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return max(0.0, min(error.retry_after, self.max_retry_after))
        return self.backoff_delay(attempt, rng)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None when the header is absent or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


async def call_with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> Any:
    """
    Run an async upstream operation under the retry policy.

    Args:
        operation: zero-argument coroutine factory performing one attempt
        policy: RetryPolicy to apply
        description: human readable target, used in logs and errors
        sleep: injectable sleep (tests pass a recorder)
        rng: injectable random source for jitter

    Returns:
        Whatever the operation returns on its first successful attempt

    Raises:
        UpstreamError: the last classified error once retries are exhausted,
            or immediately for a non-retryable error
    """
    total_attempts = max(1, policy.max_retries + 1)
    last_error: Optional[UpstreamError] = None

    for attempt in range(total_attempts):
        try:
            if policy.timeout:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            return await operation()

        except asyncio.TimeoutError:
            last_error = TransientUpstreamError(
                f"Timed out after {policy.timeout}s: {description}",
                url=description,
            )

        except UpstreamError as e:
            last_error = e

        last_error.attempts = attempt + 1

        if not last_error.retryable:
            logger.warning(
                f"Non-retryable upstream error for {description}: {last_error.message}"
            )
            raise last_error

        if attempt >= total_attempts - 1:
            break

        delay = policy.delay_for(last_error, attempt, rng)
        logger.warning(
            f"{last_error.error_type} for {description} "
            f"(attempt {attempt + 1}/{total_attempts}), retrying in {delay:.2f}s"
        )
        await sleep(delay)

    logger.error(
        f"Upstream call exhausted {total_attempts} attempts: {description}"
    )
    raise last_error


@dataclass
class RegionCircuitBreaker:
    """
    Consecutive-failure short-circuit for the sub-regions of one region.

    Failures are buffered while the streak is below the threshold. A
    success ends the streak and hands the buffered entries back so they
    can be recorded individually; reaching the threshold opens the breaker
    and the buffered entries are folded into a single region-level error.
    """

    region_id: int
    threshold: int = 3
    consecutive_failures: int = 0
    pending: List[Dict[str, Any]] = field(default_factory=list)
    is_open: bool = False

    def record_success(self) -> List[Dict[str, Any]]:
        """End the failure streak; returns the buffered entries to record."""
        if self.is_open:
            return []
        flushed = self.pending
        self.pending = []
        self.consecutive_failures = 0
        return flushed

    def record_failure(self, error_entry: Dict[str, Any]) -> bool:
        """
        Buffer a failure; returns True when this failure opens the breaker.

        Failures reported after the breaker opened (work already in flight)
        are buffered too so they end up folded into the region-level error.
        """
        self.pending.append(error_entry)
        if self.is_open:
            return False

        self.consecutive_failures += 1

        if self.threshold > 0 and self.consecutive_failures >= self.threshold:
            self.is_open = True
            logger.error(
                f"Region {self.region_id} short-circuited after "
                f"{self.consecutive_failures} consecutive sub-region failures"
            )
            return True
        return False

    def drain(self) -> List[Dict[str, Any]]:
        """Hand back buffered failures at the end of a region."""
        flushed = self.pending
        self.pending = []
        return flushed
