"""
Pytest configuration and fixtures for the price crawler test suite.
"""

import httpx
import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def authenticated_client(api_client, django_user_model):
    """API client logged in as a regular user."""
    user = django_user_model.objects.create_user(username="operator", password="pw")
    api_client.force_authenticate(user=user)
    return api_client


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


class FakeUpstream:
    """
    In-process price-reporting authority served through httpx.MockTransport.

    regions:     [{"EntidadFederativaId": 9, "Nombre": "..."}]
    sub_regions: {region_id: [{"MunicipioId": 2, "Nombre": "..."}]}
    prices:      {(region_id, upstream_sub_region_id): [entry, ...]}
    failures:    {"regions" | ("sub_regions", region_id) |
                  (region_id, upstream_sub_region_id): status code}
    """

    def __init__(self):
        self.regions = []
        self.sub_regions = {}
        self.prices = {}
        self.failures = {}
        self.webhook_status = 200
        self.requests = []
        self.webhooks = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path.endswith("/entidadesfederativas"):
            if "regions" in self.failures:
                return httpx.Response(self.failures["regions"])
            return httpx.Response(200, json=self.regions)

        if path.endswith("/municipios"):
            region_id = int(params["EntidadFederativaId"])
            if ("sub_regions", region_id) in self.failures:
                return httpx.Response(self.failures[("sub_regions", region_id)])
            return httpx.Response(200, json=self.sub_regions.get(region_id, []))

        if path.endswith("/Petroliferos"):
            key = (int(params["entidadId"]), int(params["municipioId"]))
            if key in self.failures:
                return httpx.Response(self.failures[key])
            return httpx.Response(200, json=self.prices.get(key, []))

        if path.endswith("/webhook"):
            self.webhooks.append(request)
            return httpx.Response(self.webhook_status)

        return httpx.Response(404)

    def price_requests(self):
        return [r for r in self.requests if r.url.path.endswith("/Petroliferos")]


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def make_client(sleep_recorder):
    """Build an UpstreamClient whose traffic goes to a MockTransport handler."""
    from pricecrawler.fetchers.resilience import RetryPolicy
    from pricecrawler.fetchers.upstream_client import UpstreamClient

    def _make(handler, max_retries=0, **policy_kwargs):
        policy = RetryPolicy(
            max_retries=max_retries,
            base_delay=policy_kwargs.pop("base_delay", 1.0),
            jitter=policy_kwargs.pop("jitter", 0),
            timeout=policy_kwargs.pop("timeout", 5),
            **policy_kwargs,
        )
        return UpstreamClient(
            policy=policy,
            transport=httpx.MockTransport(handler),
            sleep=sleep_recorder,
        )

    return _make


def make_price_entry(permit, descriptor, price, name=None, **extra):
    """One upstream price row."""
    row = {
        "Numero": permit,
        "Nombre": name or f"Station {permit}",
        "Direccion": "Av. Reforma 1",
        "SubProducto": descriptor,
        "PrecioVigente": price,
    }
    row.update(extra)
    return row


@pytest.fixture
def price_entry():
    return make_price_entry
