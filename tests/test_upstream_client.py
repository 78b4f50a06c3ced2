"""
Tests for the upstream HTTP client.

HTTP is faked with httpx.MockTransport; sleeps are recorded, not awaited.
"""

import httpx
import pytest

from pricecrawler.exceptions import (
    PermanentUpstreamError,
    RateLimitedError,
    TransientUpstreamError,
)
from pricecrawler.fetchers.upstream_client import classify_response


def _response(status, headers=None):
    request = httpx.Request("GET", "https://catalog.test/api/entidadesfederativas")
    return httpx.Response(status, headers=headers, request=request)


class TestClassifyResponse:

    def test_success_is_not_an_error(self):
        assert classify_response(_response(200)) is None

    @pytest.mark.parametrize("status", [408, 500, 502, 503, 504])
    def test_transient_statuses(self, status):
        error = classify_response(_response(status))
        assert isinstance(error, TransientUpstreamError)
        assert error.status_code == status

    def test_429_is_rate_limited_with_hint(self):
        error = classify_response(_response(429, headers={"Retry-After": "5"}))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 5.0

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_other_4xx_are_permanent(self, status):
        error = classify_response(_response(status))
        assert isinstance(error, PermanentUpstreamError)
        assert not error.retryable


class TestUpstreamClient:

    @pytest.mark.asyncio
    async def test_get_json_decodes_body(self, make_client):
        def handler(request):
            assert request.headers["Accept"] == "application/json"
            return httpx.Response(200, json=[{"EntidadFederativaId": 1}])

        async with make_client(handler) as client:
            payload = await client.get_json("https://catalog.test/api/entidadesfederativas")

        assert payload == [{"EntidadFederativaId": 1}]

    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self, make_client, sleep_recorder):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler, max_retries=3) as client:
            payload = await client.get_json("https://pricing.test/api/Petroliferos")

        assert payload == {"ok": True}
        assert len(calls) == 3
        assert sleep_recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_404_fails_immediately(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        async with make_client(handler, max_retries=3) as client:
            with pytest.raises(PermanentUpstreamError) as exc_info:
                await client.get_json("https://pricing.test/api/Petroliferos")

        assert len(calls) == 1
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection reset", request=request)

        async with make_client(handler, max_retries=1) as client:
            with pytest.raises(TransientUpstreamError) as exc_info:
                await client.get_json("https://pricing.test/api/Petroliferos")

        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_invalid_json_is_permanent(self, make_client):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        async with make_client(handler, max_retries=3) as client:
            with pytest.raises(PermanentUpstreamError):
                await client.get_json("https://pricing.test/api/Petroliferos")

    @pytest.mark.asyncio
    async def test_query_params_are_sent(self, make_client):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.get_json(
                "https://catalog.test/api/municipios", params={"EntidadFederativaId": 9}
            )

        assert seen == [{"EntidadFederativaId": "9"}]

    @pytest.mark.asyncio
    async def test_post_sends_raw_body_and_headers(self, make_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        async with make_client(handler) as client:
            response = await client.post(
                "https://hooks.test/webhook",
                content=b'{"a":1}',
                headers={"X-Test": "1"},
            )

        assert response.status_code == 204
        assert seen[0].content == b'{"a":1}'
        assert seen[0].headers["X-Test"] == "1"
