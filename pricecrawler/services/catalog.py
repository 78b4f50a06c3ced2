"""
Administrative catalog client.

Lists the regions published by the price-reporting authority and, per
region, its sub-regions. Both calls go through the upstream client and
therefore through the retry policy.

Upstream shapes:
    GET {catalog}/entidadesfederativas
        -> [{"EntidadFederativaId": 9, "Nombre": "Ciudad de México"}, ...]
    GET {catalog}/municipios?EntidadFederativaId=9
        -> [{"MunicipioId": 2, "EntidadFederativaId": 9, "Nombre": "..."}, ...]
"""

import logging
from typing import Any, List, Optional

from django.conf import settings

from pricecrawler.exceptions import PermanentUpstreamError
from pricecrawler.fetchers.upstream_client import UpstreamClient
from pricecrawler.models import SubRegion
from pricecrawler.services.crawl_types import RegionRecord, SubRegionRecord

logger = logging.getLogger(__name__)


class CatalogClient:
    """Region and sub-region listings."""

    REGIONS_PATH = "/entidadesfederativas"
    SUB_REGIONS_PATH = "/municipios"

    def __init__(self, client: UpstreamClient, base_url: Optional[str] = None):
        self.client = client
        self.base_url = (
            base_url or getattr(settings, "FUEL_CRAWLER_CATALOG_BASE_URL", "")
        ).rstrip("/")

    async def list_regions(self) -> List[RegionRecord]:
        """
        Fetch every region.

        Raises:
            UpstreamError: when the catalog cannot be read after retries
        """
        url = f"{self.base_url}{self.REGIONS_PATH}"
        payload = await self.client.get_json(url)
        rows = self._expect_list(payload, url)

        regions = []
        for row in rows:
            try:
                regions.append(
                    RegionRecord(
                        id=int(row["EntidadFederativaId"]),
                        name=str(row.get("Nombre") or "").strip(),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed region entry {row!r}: {e}")

        logger.info(f"Fetched {len(regions)} regions")
        return regions

    async def list_sub_regions(self, region_id: int) -> List[SubRegionRecord]:
        """
        Fetch the sub-regions of one region.

        Raises:
            UpstreamError: when the listing cannot be read after retries
        """
        url = f"{self.base_url}{self.SUB_REGIONS_PATH}"
        payload = await self.client.get_json(url, params={"EntidadFederativaId": region_id})
        rows = self._expect_list(payload, url)

        sub_regions = []
        for row in rows:
            try:
                upstream_id = int(row["MunicipioId"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed sub-region entry {row!r}: {e}")
                continue

            sub_regions.append(
                SubRegionRecord(
                    id=SubRegion.composite_id(region_id, upstream_id),
                    region_id=region_id,
                    upstream_id=upstream_id,
                    name=str(row.get("Nombre") or "").strip(),
                )
            )

        logger.info(f"Fetched {len(sub_regions)} sub-regions for region {region_id}")
        return sub_regions

    @staticmethod
    def _expect_list(payload: Any, url: str) -> list:
        if isinstance(payload, list):
            return payload
        raise PermanentUpstreamError(
            f"Unexpected catalog payload from {url}: {str(payload)[:200]}", url=url
        )
