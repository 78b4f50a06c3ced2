"""
Upstream HTTP client - httpx with retry policy.

Async httpx client shared by the catalog client, the station price
fetcher and the completion notifier. Each attempt is classified into the
crawler error taxonomy and handed to call_with_retry(), which owns the
backoff, Retry-After handling and the per-call time bound.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from django.conf import settings

from pricecrawler.exceptions import (
    PermanentUpstreamError,
    RateLimitedError,
    TransientUpstreamError,
    UpstreamError,
)
from pricecrawler.fetchers.resilience import RetryPolicy, call_with_retry, parse_retry_after

logger = logging.getLogger(__name__)


def classify_response(response: httpx.Response) -> Optional[UpstreamError]:
    """
    Map an HTTP response to an upstream error, or None for success.

    408 and 5xx are transient, 429 is rate limited, any other 4xx is
    permanent.
    """
    status = response.status_code
    url = str(response.request.url) if response.request else None

    if status < 400:
        return None

    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        return RateLimitedError(
            f"HTTP 429 from {url}",
            retry_after=retry_after,
            url=url,
            status_code=status,
        )

    if status == 408 or status >= 500:
        return TransientUpstreamError(f"HTTP {status} from {url}", url=url, status_code=status)

    return PermanentUpstreamError(f"HTTP {status} from {url}", url=url, status_code=status)


class UpstreamClient:
    """
    Async client for the price-reporting authority and the webhook receiver.

    Features:
    - Connection pooling through a single httpx.AsyncClient
    - Error classification (transient / rate limited / permanent)
    - Exponential backoff with jitter, Retry-After support
    - Per-call timeout
    """

    DEFAULT_USER_AGENT = "fuel-price-crawler/1.0"

    DEFAULT_HEADERS = {
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
    }

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the upstream client.

        Args:
            policy: Retry policy (default from settings)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            user_agent: Custom User-Agent string
            sleep: Sleep used between retries
            rng: Random source for backoff jitter
        """
        self.policy = policy or RetryPolicy.from_settings()
        self.transport = transport
        self.user_agent = user_agent or getattr(
            settings, "FUEL_CRAWLER_USER_AGENT", self.DEFAULT_USER_AGENT
        )
        self.sleep = sleep
        self.rng = rng

        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self._init_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _init_http_client(self):
        if self._http_client is None:
            headers = {
                **self.DEFAULT_HEADERS,
                "User-Agent": self.user_agent,
            }
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.policy.timeout),
                headers=headers,
                follow_redirects=True,
                transport=self.transport,
            )

    async def close(self):
        """Close HTTP client connection."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a URL and decode its JSON body, retrying per policy.

        Raises:
            UpstreamError: once the policy gives up
        """

        async def attempt():
            response = await self._send("GET", url, params=params)
            try:
                return response.json()
            except ValueError as e:
                raise PermanentUpstreamError(
                    f"Invalid JSON from {url}: {e}", url=url, status_code=response.status_code
                ) from e

        return await call_with_retry(
            attempt,
            self.policy,
            description=self._describe(url, params),
            sleep=self.sleep,
            rng=self.rng,
        )

    async def post(
        self,
        url: str,
        content: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """POST a raw body, retrying per policy."""

        async def attempt():
            return await self._send("POST", url, content=content, headers=headers)

        return await call_with_retry(
            attempt,
            self.policy,
            description=url,
            sleep=self.sleep,
            rng=self.rng,
        )

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Perform a single attempt and classify the outcome."""
        if self._http_client is None:
            await self._init_http_client()

        try:
            response = await self._http_client.request(method, url, **kwargs)

        except httpx.TimeoutException as e:
            raise TransientUpstreamError(f"Timeout calling {url}: {e}", url=url) from e

        except httpx.TransportError as e:
            raise TransientUpstreamError(
                f"Connection error calling {url}: {type(e).__name__}: {e}", url=url
            ) from e

        error = classify_response(response)
        if error is not None:
            logger.debug(f"{method} {url} -> {response.status_code}")
            raise error

        return response

    @staticmethod
    def _describe(url: str, params: Optional[Dict[str, Any]]) -> str:
        if not params:
            return url
        query = "&".join(f"{k}={v}" for k, v in params.items())
        return f"{url}?{query}"
