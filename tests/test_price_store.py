"""
Tests for the Django-backed price history store.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pricecrawler.models import PriceChange, Region, Station, SubRegion
from pricecrawler.services.change_detector import ChangeDetector
from pricecrawler.services.crawl_types import (
    PriceChangeRecord,
    PriceObservation,
    RegionRecord,
    StationRecord,
    SubRegionRecord,
)
from pricecrawler.services.price_store import DjangoPriceHistoryStore
from pricecrawler.utils.fuel_types import FuelType

T0 = datetime(2025, 1, 1, 5, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(db):
    store = DjangoPriceHistoryStore()
    store.upsert_region(RegionRecord(id=9, name="Ciudad de México"))
    store.upsert_sub_region(
        SubRegionRecord(id=9002, region_id=9, upstream_id=2, name="Azcapotzalco")
    )
    store.upsert_station(
        StationRecord(
            permit_number="PL/1",
            name="Gasolinera Norte",
            address="Av. Reforma 1",
            region_id=9,
            sub_region_id=9002,
        )
    )
    return store


def record(price, changed_at, fuel_type=FuelType.REGULAR):
    return PriceChangeRecord(
        station_id="PL/1",
        fuel_type=fuel_type,
        raw_descriptor="Regular",
        price=Decimal(price),
        changed_at=changed_at,
        detected_at=changed_at,
    )


class TestDjangoPriceHistoryStore:

    def test_catalog_upserts(self, store):
        assert Region.objects.get(id=9).name == "Ciudad de México"
        sub_region = SubRegion.objects.get(id=9002)
        assert sub_region.region_id == 9
        assert sub_region.upstream_id == 2

    def test_upsert_station_reports_creation_once(self, store):
        station = StationRecord(
            permit_number="PL/2",
            name="Old Name",
            address="",
            region_id=9,
            sub_region_id=9002,
        )

        assert store.upsert_station(station) is True
        station.name = "New Name"
        station.brand = "PEMEX"
        assert store.upsert_station(station) is False

        saved = Station.objects.get(permit_number="PL/2")
        assert saved.name == "New Name"
        assert saved.brand == "PEMEX"

    def test_append_and_get_latest(self, store):
        store.append(record("22.50", T0))
        latest = store.append(record("22.80", T0 + timedelta(days=1)))

        assert latest.id is not None
        assert store.get_latest("PL/1", FuelType.REGULAR) == latest
        assert store.get_latest("PL/1", FuelType.DIESEL) is None

    def test_history_ordered_by_changed_at(self, store):
        store.append(record("22.80", T0 + timedelta(days=1)))
        store.append(record("22.50", T0))

        assert [r.price for r in store.history("PL/1", FuelType.REGULAR)] == [
            Decimal("22.50"),
            Decimal("22.80"),
        ]

    def test_detector_is_idempotent_against_database(self, store):
        detector = ChangeDetector(store, clock=lambda: T0)
        obs = PriceObservation(
            station_id="PL/1",
            fuel_type=FuelType.REGULAR,
            raw_descriptor="Regular",
            price=Decimal("22.50"),
        )

        assert detector.detect(obs).bootstrap
        assert not detector.detect(obs).changed
        assert PriceChange.objects.count() == 1


class TestPriceChangeModel:

    def test_records_are_append_only(self, store):
        appended = store.append(record("22.50", T0))
        row = PriceChange.objects.get(id=appended.id)

        row.price = Decimal("1.00")
        with pytest.raises(ValueError):
            row.save()

    def test_composite_sub_region_id(self):
        assert SubRegion.composite_id(9, 2) == 9002
        assert SubRegion.composite_id(15, 125) == 15125
