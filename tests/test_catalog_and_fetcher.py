"""
Tests for the administrative catalog client and the station price fetcher.
"""

from decimal import Decimal

import httpx
import pytest

from pricecrawler.exceptions import MalformedRecordError, PermanentUpstreamError
from pricecrawler.services.catalog import CatalogClient
from pricecrawler.services.crawl_types import RegionRecord, SubRegionRecord
from pricecrawler.services.price_fetcher import StationPriceFetcher, parse_price, parse_source_timestamp
from pricecrawler.utils.fuel_types import FuelType

REGION = RegionRecord(id=9, name="Ciudad de México")
SUB_REGION = SubRegionRecord(id=9002, region_id=9, upstream_id=2, name="Azcapotzalco")


class TestCatalogClient:

    @pytest.mark.asyncio
    async def test_list_regions(self, fake_upstream, make_client):
        fake_upstream.regions = [
            {"EntidadFederativaId": 9, "Nombre": " Ciudad de México "},
            {"EntidadFederativaId": 15, "Nombre": "México"},
        ]

        async with make_client(fake_upstream.handler) as client:
            regions = await CatalogClient(client).list_regions()

        assert regions == [
            RegionRecord(id=9, name="Ciudad de México"),
            RegionRecord(id=15, name="México"),
        ]

    @pytest.mark.asyncio
    async def test_malformed_region_rows_are_skipped(self, fake_upstream, make_client):
        fake_upstream.regions = [{"Nombre": "no id"}, {"EntidadFederativaId": 1, "Nombre": "A"}]

        async with make_client(fake_upstream.handler) as client:
            regions = await CatalogClient(client).list_regions()

        assert [r.id for r in regions] == [1]

    @pytest.mark.asyncio
    async def test_sub_regions_get_composite_ids(self, fake_upstream, make_client):
        fake_upstream.sub_regions = {
            9: [{"MunicipioId": 2, "Nombre": "Azcapotzalco"}, {"MunicipioId": 14, "Nombre": "Benito Juárez"}],
        }

        async with make_client(fake_upstream.handler) as client:
            sub_regions = await CatalogClient(client).list_sub_regions(9)

        assert [s.id for s in sub_regions] == [9002, 9014]
        assert [s.upstream_id for s in sub_regions] == [2, 14]
        assert all(s.region_id == 9 for s in sub_regions)

    @pytest.mark.asyncio
    async def test_non_list_payload_is_permanent(self, make_client):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        async with make_client(handler) as client:
            with pytest.raises(PermanentUpstreamError):
                await CatalogClient(client).list_regions()


class TestParsePrice:

    def test_quantizes_to_cents(self):
        assert parse_price("22.499", Decimal("0"), Decimal("100")) == Decimal("22.50")
        assert parse_price(22.5, Decimal("0"), Decimal("100")) == Decimal("22.50")

    @pytest.mark.parametrize("value", [None, "", "abc", "NaN", "Infinity", True, "1e999999"])
    def test_non_numeric_is_malformed(self, value):
        with pytest.raises(MalformedRecordError):
            parse_price(value, Decimal("0"), Decimal("100"))

    @pytest.mark.parametrize("value", ["0", "-1", "100.01", "2500"])
    def test_implausible_is_malformed(self, value):
        with pytest.raises(MalformedRecordError):
            parse_price(value, Decimal("0"), Decimal("100"))


class TestParseSourceTimestamp:

    def test_aware_timestamp(self):
        assert parse_source_timestamp("2025-01-01T04:30:00Z").isoformat() == "2025-01-01T04:30:00+00:00"

    @pytest.mark.parametrize("value", [None, "", "ayer", "2025-13-45T00:00:00", "2025-02-30"])
    def test_missing_garbage_or_out_of_range_is_ignored(self, value):
        assert parse_source_timestamp(value) is None


class TestStationPriceFetcher:

    @pytest.mark.asyncio
    async def test_maps_upstream_fields(self, fake_upstream, make_client, price_entry):
        fake_upstream.prices[(9, 2)] = [
            price_entry(
                "PL/1/EXP/ES/2015",
                "Regular (con un índice de octano menor a 92)",
                22.5,
                name="Gasolinera Norte",
                Marca="PEMEX",
                FechaAplicacion="2025-01-01T04:30:00Z",
            ),
        ]

        async with make_client(fake_upstream.handler) as client:
            result = await StationPriceFetcher(client).fetch(REGION, SUB_REGION)

        assert result.malformed == 0
        entry = result.entries[0]
        assert entry.station.permit_number == "PL/1/EXP/ES/2015"
        assert entry.station.name == "Gasolinera Norte"
        assert entry.station.brand == "PEMEX"
        assert entry.station.region_id == 9
        assert entry.station.sub_region_id == 9002
        assert entry.observation.fuel_type == FuelType.REGULAR
        assert entry.observation.price == Decimal("22.50")
        assert entry.observation.source_timestamp.isoformat() == "2025-01-01T04:30:00+00:00"

        params = fake_upstream.price_requests()[0].url.params
        assert params["entidadId"] == "9"
        assert params["municipioId"] == "2"

    @pytest.mark.asyncio
    async def test_malformed_entries_are_dropped_not_the_batch(
        self, fake_upstream, make_client, price_entry
    ):
        fake_upstream.prices[(9, 2)] = [
            price_entry("PL/1", "Regular", 22.5),
            price_entry("", "Premium", 24.1),
            price_entry("PL/2", "Premium", "n/a"),
            "not an object",
            price_entry("PL/3", "Diésel", 23.9),
        ]

        async with make_client(fake_upstream.handler) as client:
            result = await StationPriceFetcher(client).fetch(REGION, SUB_REGION)

        assert result.malformed == 3
        assert [e.station.permit_number for e in result.entries] == ["PL/1", "PL/3"]

    @pytest.mark.asyncio
    async def test_unrecognized_descriptors_are_kept_for_counting(
        self, fake_upstream, make_client, price_entry
    ):
        fake_upstream.prices[(9, 2)] = [
            price_entry("PL/1", "Gas LP", 11.0),
            price_entry("PL/1", "Turbosina", 15.0),
        ]

        async with make_client(fake_upstream.handler) as client:
            result = await StationPriceFetcher(client).fetch(REGION, SUB_REGION)

        assert [e.observation.fuel_type for e in result.entries] == [
            FuelType.UNRECOGNIZED,
            FuelType.UNRECOGNIZED,
        ]

    @pytest.mark.asyncio
    async def test_first_price_per_station_and_fuel_wins(
        self, fake_upstream, make_client, price_entry
    ):
        fake_upstream.prices[(9, 2)] = [
            price_entry("PL/1", "Regular 87", 22.5),
            price_entry("PL/1", "Regular", 22.9),
        ]

        async with make_client(fake_upstream.handler) as client:
            result = await StationPriceFetcher(client).fetch(REGION, SUB_REGION)

        assert len(result.entries) == 1
        assert result.entries[0].observation.price == Decimal("22.50")

    @pytest.mark.asyncio
    async def test_error_payload_means_no_data(self, make_client):
        def handler(request):
            return httpx.Response(200, json={"error": "No se encontraron datos"})

        async with make_client(handler) as client:
            result = await StationPriceFetcher(client).fetch(REGION, SUB_REGION)

        assert result.entries == []
        assert result.malformed == 0

    @pytest.mark.asyncio
    async def test_unexpected_payload_is_permanent(self, make_client):
        def handler(request):
            return httpx.Response(200, json="maintenance")

        async with make_client(handler) as client:
            with pytest.raises(PermanentUpstreamError):
                await StationPriceFetcher(client).fetch(REGION, SUB_REGION)
