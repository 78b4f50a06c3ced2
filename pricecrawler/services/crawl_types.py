"""
Data types for the crawl pipeline.

Plain dataclasses passed between the catalog client, the price fetcher,
the change detector and the stores, so that none of them depends on the
Django ORM directly.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RegionRecord:
    id: int
    name: str


@dataclass(frozen=True)
class SubRegionRecord:
    """A sub-region; id is the composite key, upstream_id the published one."""

    id: int
    region_id: int
    upstream_id: int
    name: str


@dataclass
class StationRecord:
    permit_number: str
    name: str
    address: str
    region_id: int
    sub_region_id: int
    brand: Optional[str] = None
    is_active: bool = True


@dataclass
class PriceObservation:
    """
    One fetched price entry. Never persisted directly.

    fuel_type is the normalized value ("unrecognized" when no rule matched).
    """

    station_id: str
    fuel_type: str
    raw_descriptor: str
    price: Decimal
    source_timestamp: Optional[datetime] = None


@dataclass
class FetchedEntry:
    """A station and the observation carried by one upstream entry."""

    station: StationRecord
    observation: PriceObservation


@dataclass
class PriceChangeRecord:
    """A persisted price change; id is None until appended."""

    station_id: str
    fuel_type: str
    raw_descriptor: str
    price: Decimal
    changed_at: datetime
    detected_at: datetime
    id: Optional[int] = None


COUNTER_FIELDS = (
    "regions_processed",
    "sub_regions_processed",
    "stations_found",
    "new_stations_added",
    "price_changes_detected",
    "unchanged_prices",
    "unmapped_descriptors",
    "malformed_entries",
)


@dataclass
class CrawlStats:
    """
    Run counters.

    Workers update counters through increment(), which holds a lock so
    updates from the thread running ORM work and the event loop never race.
    """

    regions_processed: int = 0
    sub_regions_processed: int = 0
    stations_found: int = 0
    new_stations_added: int = 0
    price_changes_detected: int = 0
    unchanged_prices: int = 0
    unmapped_descriptors: int = 0
    malformed_entries: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter not in COUNTER_FIELDS:
            raise KeyError(f"Unknown counter: {counter}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def to_dict(self) -> Dict[str, int]:
        with self._lock:
            return {counter: getattr(self, counter) for counter in COUNTER_FIELDS}


@dataclass
class CrawlRunResult:
    """Outcome of one orchestrated crawl."""

    run_id: Any
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    counts: Dict[str, int] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "counts": self.counts,
            "errors": self.errors,
            "errors_total": len(self.errors),
            "dry_run": self.dry_run,
        }
