"""
Price history store.

Narrow repository for the append-only price ledger and the idempotent
station upsert:

    get_latest(station_id, fuel_type) -> PriceChangeRecord | None
    append(record) -> PriceChangeRecord (with id)
    upsert_station(station) -> bool (True when the station is new)

key_lock() serializes the get-then-append sequence for one
(station, fuel type) so a concurrent write to the same key can never
interleave with it. DjangoPriceHistoryStore is the production
implementation; InMemoryPriceHistoryStore backs tests and dry runs.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from pricecrawler.services.crawl_types import (
    PriceChangeRecord,
    RegionRecord,
    StationRecord,
    SubRegionRecord,
)

logger = logging.getLogger(__name__)

PriceKey = Tuple[str, str]


class KeyLocks:
    """
    Per-key threading locks.

    A key's lock lives only while some thread holds or waits for it, so
    the table stays as small as the number of keys in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[PriceKey, threading.Lock] = {}
        self._users: Dict[PriceKey, int] = {}

    @contextmanager
    def hold(self, key: PriceKey) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1

        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class PriceHistoryStore(ABC):
    """Repository contract for stations and the price change ledger."""

    def __init__(self):
        self._key_locks = KeyLocks()

    @contextmanager
    def key_lock(self, station_id: str, fuel_type: str) -> Iterator[None]:
        """Serialize reads and writes for one (station, fuel type)."""
        with self._key_locks.hold((station_id, fuel_type)):
            yield

    @abstractmethod
    def get_latest(self, station_id: str, fuel_type: str) -> Optional[PriceChangeRecord]:
        """Most recent record by changed_at, or None."""

    @abstractmethod
    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        """Insert a new record and return it with its id."""

    @abstractmethod
    def history(self, station_id: str, fuel_type: str) -> List[PriceChangeRecord]:
        """All records for a key ordered by changed_at ascending."""

    @abstractmethod
    def upsert_station(self, station: StationRecord) -> bool:
        """Insert or update a station; returns True when it was created."""

    @abstractmethod
    def upsert_region(self, region: RegionRecord) -> None:
        pass

    @abstractmethod
    def upsert_sub_region(self, sub_region: SubRegionRecord) -> None:
        pass


class DjangoPriceHistoryStore(PriceHistoryStore):
    """Store backed by the stations / price_changes tables."""

    @contextmanager
    def key_lock(self, station_id: str, fuel_type: str) -> Iterator[None]:
        """
        Per-key lock plus a row lock on the station.

        The in-process lock covers workers of this crawler; the
        select_for_update on the station row covers other processes on
        databases that support row locks.
        """
        from pricecrawler.models import Station

        with super().key_lock(station_id, fuel_type):
            with transaction.atomic():
                list(Station.objects.select_for_update().filter(permit_number=station_id))
                yield

    def get_latest(self, station_id: str, fuel_type: str) -> Optional[PriceChangeRecord]:
        from pricecrawler.models import PriceChange

        row = (
            PriceChange.objects.filter(station_id=station_id, fuel_type=fuel_type)
            .order_by("-changed_at", "-id")
            .first()
        )
        return self._to_record(row) if row else None

    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        from pricecrawler.models import PriceChange

        row = PriceChange.objects.create(
            station_id=record.station_id,
            fuel_type=record.fuel_type,
            raw_descriptor=record.raw_descriptor,
            price=record.price,
            changed_at=record.changed_at,
            detected_at=record.detected_at,
        )
        logger.debug(
            f"Appended price change {row.id}: {record.station_id} "
            f"{record.fuel_type} = {record.price}"
        )
        return self._to_record(row)

    def history(self, station_id: str, fuel_type: str) -> List[PriceChangeRecord]:
        from pricecrawler.models import PriceChange

        rows = PriceChange.objects.filter(
            station_id=station_id, fuel_type=fuel_type
        ).order_by("changed_at", "id")
        return [self._to_record(row) for row in rows]

    def upsert_station(self, station: StationRecord) -> bool:
        from pricecrawler.models import Station

        _, created = Station.objects.update_or_create(
            permit_number=station.permit_number,
            defaults={
                "name": station.name,
                "address": station.address,
                "region_id": station.region_id,
                "sub_region_id": station.sub_region_id,
                "brand": station.brand,
                "is_active": station.is_active,
                "updated_at": timezone.now(),
            },
        )
        return created

    def upsert_region(self, region: RegionRecord) -> None:
        from pricecrawler.models import Region

        Region.objects.update_or_create(
            id=region.id,
            defaults={"name": region.name, "updated_at": timezone.now()},
        )

    def upsert_sub_region(self, sub_region: SubRegionRecord) -> None:
        from pricecrawler.models import SubRegion

        SubRegion.objects.update_or_create(
            id=sub_region.id,
            defaults={
                "region_id": sub_region.region_id,
                "upstream_id": sub_region.upstream_id,
                "name": sub_region.name,
                "updated_at": timezone.now(),
            },
        )

    @staticmethod
    def _to_record(row) -> PriceChangeRecord:
        return PriceChangeRecord(
            id=row.id,
            station_id=row.station_id,
            fuel_type=row.fuel_type,
            raw_descriptor=row.raw_descriptor,
            price=row.price,
            changed_at=row.changed_at,
            detected_at=row.detected_at,
        )


class InMemoryPriceHistoryStore(PriceHistoryStore):
    """Process-local store with the same contract."""

    def __init__(self):
        super().__init__()
        self._ids = itertools.count(1)
        self._guard = threading.Lock()
        self.records: Dict[PriceKey, List[PriceChangeRecord]] = {}
        self.stations: Dict[str, StationRecord] = {}
        self.regions: Dict[int, RegionRecord] = {}
        self.sub_regions: Dict[int, SubRegionRecord] = {}

    def get_latest(self, station_id: str, fuel_type: str) -> Optional[PriceChangeRecord]:
        with self._guard:
            records = self.records.get((station_id, fuel_type))
            if not records:
                return None
            return max(records, key=lambda r: (r.changed_at, r.id))

    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        with self._guard:
            stored = PriceChangeRecord(
                id=next(self._ids),
                station_id=record.station_id,
                fuel_type=record.fuel_type,
                raw_descriptor=record.raw_descriptor,
                price=record.price,
                changed_at=record.changed_at,
                detected_at=record.detected_at,
            )
            self.records.setdefault((record.station_id, record.fuel_type), []).append(stored)
            return stored

    def history(self, station_id: str, fuel_type: str) -> List[PriceChangeRecord]:
        with self._guard:
            records = list(self.records.get((station_id, fuel_type), []))
        return sorted(records, key=lambda r: (r.changed_at, r.id))

    def all_records(self) -> List[PriceChangeRecord]:
        with self._guard:
            records = [r for rows in self.records.values() for r in rows]
        return sorted(records, key=lambda r: r.id)

    def upsert_station(self, station: StationRecord) -> bool:
        with self._guard:
            created = station.permit_number not in self.stations
            self.stations[station.permit_number] = station
            return created

    def upsert_region(self, region: RegionRecord) -> None:
        with self._guard:
            self.regions[region.id] = region

    def upsert_sub_region(self, sub_region: SubRegionRecord) -> None:
        with self._guard:
            self.sub_regions[sub_region.id] = sub_region
