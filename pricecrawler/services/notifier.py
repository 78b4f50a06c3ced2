"""
Completion notifier.

Delivers one signed summary per finalized run to the downstream webhook.
The body is serialized once and the signature is an HMAC-SHA256 over
exactly those bytes:

    X-Webhook-Signature: sha256=<hex digest>

Receivers recompute the digest over the raw request body with the shared
secret (see verify_signature) before trusting the payload.

Delivery retries through the upstream client's policy. A delivery that
still fails is logged and reported to Sentry; the run status is already
final and is never touched from here.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from django.conf import settings

from pricecrawler.exceptions import UpstreamError
from pricecrawler.fetchers.upstream_client import UpstreamClient
from pricecrawler.monitoring.sentry_integration import capture_crawl_error
from pricecrawler.services.crawl_types import CrawlRunResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    """Canonical JSON encoding: sorted keys, no insignificant whitespace."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    ).encode("utf-8")


def sign(body: bytes, secret: str) -> str:
    """
    Signature header value for a raw body.

    Example:
        >>> sign(b"{}", "s3cret").startswith("sha256=")
        True
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, secret: str, signature: Optional[str]) -> bool:
    """Constant-time check of a received signature header against the body."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign(body, secret), signature.strip())


class CompletionNotifier:
    """Signs and posts the run summary to the configured webhook."""

    def __init__(
        self,
        client: UpstreamClient,
        url: Optional[str] = None,
        secret: Optional[str] = None,
        max_errors: Optional[int] = None,
    ):
        self.client = client
        self.url = url if url is not None else getattr(settings, "FUEL_CRAWLER_WEBHOOK_URL", "")
        self.secret = (
            secret if secret is not None else getattr(settings, "FUEL_CRAWLER_WEBHOOK_SECRET", "")
        )
        self.max_errors = (
            max_errors
            if max_errors is not None
            else getattr(settings, "FUEL_CRAWLER_WEBHOOK_MAX_ERRORS", 50)
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.secret)

    def build_payload(self, result: CrawlRunResult) -> Dict[str, Any]:
        """Summary sent to the receiver; the error list is truncated."""
        return {
            "run_id": result.run_id,
            "status": str(result.status),
            "started_at": result.started_at.isoformat() if result.started_at else None,
            "completed_at": result.completed_at.isoformat() if result.completed_at else None,
            "dry_run": result.dry_run,
            "counts": dict(result.counts),
            "errors": list(result.errors[: self.max_errors]),
            "errors_total": len(result.errors),
        }

    async def notify(self, result: CrawlRunResult) -> bool:
        """
        Deliver the summary once. Returns True on a 2xx response.

        Never raises for delivery problems.
        """
        if not self.enabled:
            logger.info(f"Webhook not configured, skipping notification for run {result.run_id}")
            return False

        body = serialize_payload(self.build_payload(result))
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(body, self.secret),
        }

        try:
            response = await self.client.post(self.url, content=body, headers=headers)
        except UpstreamError as e:
            logger.error(
                f"Webhook delivery for run {result.run_id} failed after "
                f"{e.attempts} attempt(s): {e.message}"
            )
            capture_crawl_error(e, run_id=result.run_id, extra_context={"webhook": self.url})
            return False

        logger.info(
            f"Delivered completion webhook for run {result.run_id} "
            f"(HTTP {response.status_code})"
        )
        return True
