"""
Tests for Sentry integration and structured error entries.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest

from pricecrawler.exceptions import (
    CrawlAbortedError,
    PermanentUpstreamError,
    TransientUpstreamError,
)
from pricecrawler.monitoring.error_logger import build_error_entry, log_error_with_context


@pytest.fixture
def mock_sentry():
    """Patch the sentry_sdk module used by the integration."""
    mock = Mock()
    mock.add_breadcrumb = Mock()
    mock.new_scope = Mock(return_value=MagicMock())
    mock.capture_exception = Mock()
    with patch("pricecrawler.monitoring.sentry_integration.sentry_sdk", mock):
        yield mock


class TestSentryErrorCapture:
    """Sentry capture with crawl context."""

    def test_capture_crawl_error_adds_breadcrumb_and_tags(self, mock_sentry):
        from pricecrawler.monitoring.sentry_integration import capture_crawl_error

        error = ValueError("Test fetch error")
        capture_crawl_error(error, run_id=7, region_id=9, sub_region_id=9002)

        mock_sentry.add_breadcrumb.assert_called_once()
        breadcrumb_kwargs = mock_sentry.add_breadcrumb.call_args[1]
        assert breadcrumb_kwargs["category"] == "crawl"
        assert breadcrumb_kwargs["level"] == "error"
        assert breadcrumb_kwargs["data"]["region_id"] == 9
        assert breadcrumb_kwargs["data"]["sub_region_id"] == 9002

        scope = mock_sentry.new_scope.return_value.__enter__.return_value
        scope.set_tag.assert_any_call("crawler.run_id", "7")
        scope.set_tag.assert_any_call("crawler.region_id", 9)
        scope.set_tag.assert_any_call("crawler.sub_region_id", 9002)
        mock_sentry.capture_exception.assert_called_once_with(error)

    def test_capture_error_filters_sensitive_data(self, mock_sentry):
        from pricecrawler.monitoring.sentry_integration import capture_crawl_error

        capture_crawl_error(
            RuntimeError("boom"),
            run_id=1,
            extra_context={
                "webhook": "https://hooks.test/webhook",
                "webhook_secret": "s3cret",
                "headers": {"X-Webhook-Signature": "sha256=abc"},
            },
        )

        scope = mock_sentry.new_scope.return_value.__enter__.return_value
        context = scope.set_extra.call_args[0][1]
        assert context["webhook"] == "https://hooks.test/webhook"
        assert context["webhook_secret"] == "[Filtered]"
        assert context["headers"]["X-Webhook-Signature"] == "[Filtered]"

    def test_sentry_failures_are_swallowed(self, mock_sentry):
        from pricecrawler.monitoring.sentry_integration import capture_crawl_error

        mock_sentry.capture_exception.side_effect = RuntimeError("transport down")

        capture_crawl_error(ValueError("x"), run_id=1)

    def test_no_client_configured_is_noop(self):
        from pricecrawler.monitoring.sentry_integration import (
            add_crawl_breadcrumb,
            capture_crawl_error,
        )

        add_crawl_breadcrumb("Crawl run started", run_id=1)
        capture_crawl_error(ValueError("x"), run_id=1)


class TestErrorEntries:
    """Shape of ScraperRun.errors entries."""

    def test_upstream_error_entry(self):
        error = TransientUpstreamError(
            "HTTP 503 from https://pricing.test/api/Petroliferos",
            url="https://pricing.test/api/Petroliferos",
            status_code=503,
            attempts=4,
        )

        entry = build_error_entry(error, scope="sub_region", region_id=9, sub_region_id=9002)

        assert entry["type"] == "TRANSIENT_UPSTREAM_ERROR"
        assert entry["scope"] == "sub_region"
        assert entry["region_id"] == 9
        assert entry["sub_region_id"] == 9002
        assert entry["endpoint"] == "https://pricing.test/api/Petroliferos"
        assert entry["status_code"] == 503
        assert entry["attempts"] == 4
        assert "occurred_at" in entry

    def test_none_values_are_dropped(self):
        entry = build_error_entry(PermanentUpstreamError("bad payload"), scope="region", region_id=9)

        assert "status_code" not in entry
        assert "endpoint" not in entry
        assert "sub_region_id" not in entry

    def test_crawler_error_uses_its_type(self):
        entry = build_error_entry(CrawlAbortedError("stopped"), scope="run")

        assert entry == {
            "type": "ABORTED",
            "message": "stopped",
            "scope": "run",
            "occurred_at": entry["occurred_at"],
        }

    def test_unexpected_exception_is_processing_error(self):
        entry = build_error_entry(KeyError("price"), scope="sub_region")

        assert entry["type"] == "PROCESSING_ERROR"
        assert entry["message"].startswith("KeyError")

    def test_synthesized_entry_with_overrides(self):
        entry = build_error_entry(
            None,
            scope="region",
            region_id=9,
            error_type="REGION_SHORT_CIRCUITED",
            message="Region 9 short-circuited",
            details={"skipped_sub_regions": [9004]},
        )

        assert entry["type"] == "REGION_SHORT_CIRCUITED"
        assert entry["message"] == "Region 9 short-circuited"
        assert entry["details"] == {"skipped_sub_regions": [9004]}

    def test_log_error_with_context_reports_to_sentry(self):
        error = PermanentUpstreamError("HTTP 404", status_code=404)

        with patch("pricecrawler.monitoring.error_logger.capture_crawl_error") as capture:
            entry = log_error_with_context(error, scope="sub_region", run_id=3, region_id=9, sub_region_id=9001)

        capture.assert_called_once()
        assert capture.call_args[1]["run_id"] == 3
        assert capture.call_args[1]["extra_context"]["entry"] == entry
        assert entry["status_code"] == 404
