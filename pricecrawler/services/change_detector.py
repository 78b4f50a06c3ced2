"""
Change detection for fetched price observations.

For one observation the detector reads the latest persisted record for
(station, fuel type) and appends a new record only when there is none
(bootstrap) or the price differs. Prices are currency-quantized Decimals,
so the comparison is exact equality with no tolerance.

changed_at is the source-reported change time when available, otherwise
the detection time. It is never placed before the latest record of the
same key, so the history ordered by changed_at never shows two adjacent
equal prices.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from django.utils import timezone

from pricecrawler.exceptions import UnmappedFuelTypeError
from pricecrawler.services.crawl_types import PriceChangeRecord, PriceObservation
from pricecrawler.services.price_store import PriceHistoryStore
from pricecrawler.utils.fuel_types import is_trackable

logger = logging.getLogger(__name__)


@dataclass
class DetectionOutcome:
    """Result of checking one observation."""

    changed: bool
    bootstrap: bool = False
    record: Optional[PriceChangeRecord] = None
    previous: Optional[PriceChangeRecord] = None


class ChangeDetector:
    """
    Decides whether an observation is a genuine price change.

    Idempotent: replaying an unchanged observation never appends a record.
    """

    def __init__(
        self,
        store: PriceHistoryStore,
        dry_run: bool = False,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.dry_run = dry_run
        self.clock = clock

    def detect(self, observation: PriceObservation) -> DetectionOutcome:
        """
        Check one observation and persist it when it is a change.

        Raises:
            UnmappedFuelTypeError: if the observation has no canonical fuel type
        """
        if not is_trackable(observation.fuel_type):
            raise UnmappedFuelTypeError(observation.raw_descriptor)

        with self.store.key_lock(observation.station_id, observation.fuel_type):
            latest = self.store.get_latest(observation.station_id, observation.fuel_type)

            if latest is not None and latest.price == observation.price:
                return DetectionOutcome(changed=False, previous=latest)

            detected_at = self.clock()
            record = PriceChangeRecord(
                station_id=observation.station_id,
                fuel_type=observation.fuel_type,
                raw_descriptor=observation.raw_descriptor,
                price=observation.price,
                changed_at=self.resolve_changed_at(observation, latest, detected_at),
                detected_at=detected_at,
            )

            if not self.dry_run:
                record = self.store.append(record)

        if latest is None:
            logger.debug(
                f"Bootstrap price for {observation.station_id}/{observation.fuel_type}: "
                f"{observation.price}"
            )
        else:
            logger.debug(
                f"Price change for {observation.station_id}/{observation.fuel_type}: "
                f"{latest.price} -> {observation.price}"
            )

        return DetectionOutcome(
            changed=True,
            bootstrap=latest is None,
            record=record,
            previous=latest,
        )

    @staticmethod
    def resolve_changed_at(
        observation: PriceObservation,
        latest: Optional[PriceChangeRecord],
        detected_at: datetime,
    ) -> datetime:
        """
        Pick the effective change time.

        A source timestamp in the future is replaced by the detection time;
        the result is clamped to the latest record's changed_at.
        """
        changed_at = observation.source_timestamp or detected_at
        if changed_at > detected_at:
            changed_at = detected_at
        if latest is not None and changed_at < latest.changed_at:
            changed_at = latest.changed_at
        return changed_at
