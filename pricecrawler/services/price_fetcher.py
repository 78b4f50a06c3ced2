"""
Station price fetcher.

Fetches the raw price entries for one (region, sub-region) pair and maps
the upstream field names to StationRecord / PriceObservation.

Upstream shape:
    GET {pricing}/Petroliferos?entidadId=9&municipioId=2
        -> [{"Numero": "PL/1234/EXP/ES/2015", "Nombre": "...",
             "Direccion": "...", "Producto": "Gasolinas",
             "SubProducto": "Regular (con un índice de octano menor a 92)",
             "PrecioVigente": 22.5}, ...]

A station only lists the products it sells, so missing fuel types are
simply absent. A malformed entry is dropped with a warning and never
discards the rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set, Tuple

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from pricecrawler.exceptions import MalformedRecordError, PermanentUpstreamError
from pricecrawler.fetchers.upstream_client import UpstreamClient
from pricecrawler.services.crawl_types import (
    FetchedEntry,
    PriceObservation,
    RegionRecord,
    StationRecord,
    SubRegionRecord,
)
from pricecrawler.utils.fuel_types import is_trackable, normalize_fuel_type

logger = logging.getLogger(__name__)

PRICE_QUANTUM = Decimal("0.01")

# Upstream field name -> internal name
UPSTREAM_FIELD_MAP = {
    "Numero": "permit_number",
    "Nombre": "name",
    "Direccion": "address",
    "Marca": "brand",
    "SubProducto": "descriptor",
    "PrecioVigente": "price",
    "FechaAplicacion": "source_timestamp",
}


@dataclass
class FetchResult:
    """Entries fetched for one sub-region."""

    entries: List[FetchedEntry] = field(default_factory=list)
    malformed: int = 0


def parse_price(value: Any, min_price: Decimal, max_price: Decimal) -> Decimal:
    """
    Parse and quantize an upstream price.

    Raises:
        MalformedRecordError: missing, non-numeric or implausible price
    """
    if value is None or isinstance(value, bool):
        raise MalformedRecordError(f"Missing price: {value!r}")

    try:
        price = Decimal(str(value).strip())
        if not price.is_finite():
            raise MalformedRecordError(f"Non-numeric price: {value!r}")
        price = price.quantize(PRICE_QUANTUM)
    except (InvalidOperation, ValueError) as e:
        raise MalformedRecordError(f"Non-numeric price: {value!r}") from e

    if price <= min_price or price > max_price:
        raise MalformedRecordError(f"Implausible price: {price}")
    return price


def parse_source_timestamp(value: Any) -> Optional[datetime]:
    """Parse an optional source change time; unparseable values are ignored."""
    if not value:
        return None
    try:
        parsed = parse_datetime(str(value))
    except ValueError:
        # well formed but out of range, e.g. month 13
        logger.debug(f"Ignoring invalid source timestamp {value!r}")
        return None
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_default_timezone())
    return parsed


class StationPriceFetcher:
    """Price listing for one (region, sub-region)."""

    PRICES_PATH = "/Petroliferos"

    def __init__(
        self,
        client: UpstreamClient,
        base_url: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
    ):
        self.client = client
        self.base_url = (
            base_url or getattr(settings, "FUEL_CRAWLER_PRICING_BASE_URL", "")
        ).rstrip("/")
        self.min_price = Decimal(
            str(min_price if min_price is not None else getattr(settings, "FUEL_CRAWLER_MIN_PRICE", 0))
        )
        self.max_price = Decimal(
            str(max_price if max_price is not None else getattr(settings, "FUEL_CRAWLER_MAX_PRICE", 100))
        )

    async def fetch(self, region: RegionRecord, sub_region: SubRegionRecord) -> FetchResult:
        """
        Fetch and map the price entries of one sub-region.

        Raises:
            UpstreamError: when the listing cannot be read after retries
        """
        url = f"{self.base_url}{self.PRICES_PATH}"
        payload = await self.client.get_json(
            url,
            params={"entidadId": region.id, "municipioId": sub_region.upstream_id},
        )

        if isinstance(payload, dict) and "error" in payload:
            logger.warning(
                f"No data for sub-region {sub_region.id}: {payload.get('error')}"
            )
            return FetchResult()

        if not isinstance(payload, list):
            raise PermanentUpstreamError(
                f"Unexpected price payload for sub-region {sub_region.id}: {str(payload)[:200]}",
                url=url,
            )

        return self.parse_entries(payload, region, sub_region)

    def parse_entries(
        self,
        rows: List[Dict[str, Any]],
        region: RegionRecord,
        sub_region: SubRegionRecord,
    ) -> FetchResult:
        """
        Map upstream rows, dropping malformed ones.

        Only the first price per (station, fuel type) in a batch is kept.
        """
        result = FetchResult()
        seen: Set[Tuple[str, str]] = set()

        for row in rows:
            try:
                entry = self.parse_entry(row, region, sub_region)
            except MalformedRecordError as e:
                result.malformed += 1
                logger.warning(f"Dropping malformed entry in sub-region {sub_region.id}: {e}")
                continue

            key = (entry.station.permit_number, entry.observation.fuel_type)
            if is_trackable(key[1]):
                if key in seen:
                    logger.debug(f"Ignoring duplicate price for {key} in sub-region {sub_region.id}")
                    continue
                seen.add(key)
            result.entries.append(entry)

        return result

    def parse_entry(
        self,
        row: Dict[str, Any],
        region: RegionRecord,
        sub_region: SubRegionRecord,
    ) -> FetchedEntry:
        """
        Map one upstream row.

        Raises:
            MalformedRecordError: on a missing permit number, name or price
        """
        if not isinstance(row, dict):
            raise MalformedRecordError(f"Entry is not an object: {row!r}")

        fields = {internal: row.get(upstream) for upstream, internal in UPSTREAM_FIELD_MAP.items()}

        permit_number = str(fields["permit_number"] or "").strip()
        if not permit_number:
            raise MalformedRecordError("Missing permit number")

        name = str(fields["name"] or "").strip()
        if not name:
            raise MalformedRecordError(f"Missing station name for {permit_number}")

        descriptor = str(fields["descriptor"] or "").strip()
        price = parse_price(fields["price"], self.min_price, self.max_price)

        station = StationRecord(
            permit_number=permit_number,
            name=name,
            address=str(fields["address"] or "").strip(),
            region_id=region.id,
            sub_region_id=sub_region.id,
            brand=(str(fields["brand"]).strip() or None) if fields["brand"] else None,
        )
        observation = PriceObservation(
            station_id=permit_number,
            fuel_type=normalize_fuel_type(descriptor),
            raw_descriptor=descriptor,
            price=price,
            source_timestamp=parse_source_timestamp(fields["source_timestamp"]),
        )
        return FetchedEntry(station=station, observation=observation)
