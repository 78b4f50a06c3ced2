"""
Crawl Orchestrator - one full pass over the region / sub-region catalog.

State machine per run:

    IDLE -> RUNNING -> COMPLETED | FAILED

Flow:
1. Allocate a run through the ledger (rejects overlapping triggers)
2. List regions; an unreachable region catalog is run-fatal
3. Per region: upsert it, list its sub-regions, then feed them through a
   bounded pool of async workers (fetch -> normalize -> detect -> persist)
4. Scoped failures become entries on the run's error list; repeated
   consecutive sub-region failures short-circuit the rest of the region
5. Finalize the run exactly once, then deliver the completion webhook

ORM work runs through asgiref's sync_to_async so the event loop only
carries HTTP traffic.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone

from pricecrawler.exceptions import (
    CrawlAbortedError,
    CrawlAlreadyRunningError,
    RunAlreadyFinalizedError,
    RunFatalError,
    UnmappedFuelTypeError,
    UpstreamError,
)
from pricecrawler.fetchers.resilience import RegionCircuitBreaker
from pricecrawler.fetchers.upstream_client import UpstreamClient
from pricecrawler.models import ScraperRunStatus
from pricecrawler.monitoring.error_logger import build_error_entry, log_error_with_context
from pricecrawler.monitoring.sentry_integration import add_crawl_breadcrumb, capture_crawl_error
from pricecrawler.services.catalog import CatalogClient
from pricecrawler.services.change_detector import ChangeDetector
from pricecrawler.services.crawl_types import (
    CrawlRunResult,
    CrawlStats,
    RegionRecord,
    SubRegionRecord,
)
from pricecrawler.services.notifier import CompletionNotifier
from pricecrawler.services.price_fetcher import FetchResult, StationPriceFetcher
from pricecrawler.services.price_store import DjangoPriceHistoryStore, PriceHistoryStore
from pricecrawler.services.run_ledger import DjangoRunLedger, RunLedger

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CrawlOrchestrator:
    """
    Drives a crawl and owns the run lifecycle.

    Usage:
        orchestrator = CrawlOrchestrator()
        result = await orchestrator.run_once()
        print(result.status, result.counts)
    """

    def __init__(
        self,
        store: Optional[PriceHistoryStore] = None,
        ledger: Optional[RunLedger] = None,
        client: Optional[UpstreamClient] = None,
        notifier: Optional[CompletionNotifier] = None,
        concurrency: Optional[int] = None,
        failure_threshold: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Price history store (default: Django ORM)
            ledger: Run ledger (default: Django ORM lease + scraper_runs)
            client: Upstream HTTP client (default: built from settings and
                closed when the run ends)
            notifier: Completion notifier (default: webhook from settings)
            concurrency: Worker pool size per region
            failure_threshold: Consecutive sub-region failures that
                short-circuit a region
        """
        self.store = store or DjangoPriceHistoryStore()
        self.ledger = ledger or DjangoRunLedger()
        self._owns_client = client is None
        self.client = client or UpstreamClient()
        self.catalog = CatalogClient(self.client)
        self.fetcher = StationPriceFetcher(self.client)
        self.notifier = notifier or CompletionNotifier(self.client)
        self.concurrency = max(
            1,
            concurrency
            if concurrency is not None
            else getattr(settings, "FUEL_CRAWLER_WORKER_CONCURRENCY", 4),
        )
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else getattr(settings, "FUEL_CRAWLER_REGION_FAILURE_THRESHOLD", 3)
        )

        self.state = OrchestratorState.IDLE
        self.run_id: Any = None
        self.stats = CrawlStats()
        self.errors: List[Dict[str, Any]] = []
        self.dry_run = False
        self.detector: Optional[ChangeDetector] = None
        self._stop_requested = threading.Event()

    def request_stop(self) -> None:
        """Ask the running crawl to abort before its next unit of work."""
        if not self._stop_requested.is_set():
            logger.warning(f"Stop requested for crawl run {self.run_id}")
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    async def run_once(
        self,
        dry_run: bool = False,
        max_regions: Optional[int] = None,
        max_sub_regions_per_region: Optional[int] = None,
    ) -> CrawlRunResult:
        """
        Execute one complete crawl.

        Args:
            dry_run: Detect changes without writing catalog, stations or prices
            max_regions: Only crawl the first N regions
            max_sub_regions_per_region: Only crawl the first N sub-regions of
                each region

        Returns:
            CrawlRunResult for the finalized run

        Raises:
            CrawlAlreadyRunningError: another run is active; nothing was started
        """
        if self.state == OrchestratorState.RUNNING:
            raise CrawlAlreadyRunningError(self.run_id)

        started_at = timezone.now()
        self.run_id = await sync_to_async(self.ledger.start_run)(dry_run=dry_run)
        self.state = OrchestratorState.RUNNING
        self.stats = CrawlStats()
        self.errors = []
        self.dry_run = dry_run
        self.detector = ChangeDetector(self.store, dry_run=dry_run)
        self._stop_requested.clear()

        logger.info(
            f"Crawl run {self.run_id} started"
            f"{' (dry run)' if dry_run else ''}"
        )
        add_crawl_breadcrumb("Crawl run started", run_id=self.run_id)

        status = ScraperRunStatus.COMPLETED
        cancelled = False

        try:
            await self._crawl(max_regions, max_sub_regions_per_region)

        except RunFatalError as e:
            status = ScraperRunStatus.FAILED
            self.errors.append(build_error_entry(e, scope="run"))
            logger.error(f"Crawl run {self.run_id} failed: {e}")

        except CrawlAbortedError as e:
            status = ScraperRunStatus.FAILED
            self.errors.append(build_error_entry(e, scope="run"))
            logger.warning(f"Crawl run {self.run_id} aborted")

        except asyncio.CancelledError:
            cancelled = True
            status = ScraperRunStatus.FAILED
            self.errors.append(
                build_error_entry(
                    CrawlAbortedError("Crawl task was cancelled"), scope="run"
                )
            )
            logger.warning(f"Crawl run {self.run_id} cancelled")

        except Exception as e:
            status = ScraperRunStatus.FAILED
            self.errors.append(build_error_entry(e, scope="run", error_type=RunFatalError.error_type))
            logger.exception(f"Crawl run {self.run_id} failed unexpectedly: {e}")
            capture_crawl_error(e, run_id=self.run_id)

        result = await self._finalize(status, started_at)

        if cancelled:
            # the run is final, so the summary still goes out before re-raising
            await asyncio.shield(self._notify_and_close(result))
            raise asyncio.CancelledError()

        await self._notify_and_close(result)
        return result

    async def _notify_and_close(self, result: CrawlRunResult) -> None:
        try:
            await self.notifier.notify(result)
        finally:
            await self._close_client()

    async def _crawl(
        self,
        max_regions: Optional[int],
        max_sub_regions_per_region: Optional[int],
    ) -> None:
        try:
            regions = await self.catalog.list_regions()
        except UpstreamError as e:
            capture_crawl_error(e, run_id=self.run_id)
            raise RunFatalError(f"Region catalog unreachable: {e.message}") from e

        if max_regions is not None:
            regions = regions[:max_regions]

        logger.info(f"Crawl run {self.run_id}: {len(regions)} regions to process")

        for region in regions:
            self._check_stop()
            await self._process_region(region, max_sub_regions_per_region)

    async def _process_region(
        self,
        region: RegionRecord,
        max_sub_regions: Optional[int],
    ) -> None:
        add_crawl_breadcrumb(
            f"Processing region {region.name}", run_id=self.run_id, region_id=region.id
        )

        if not self.dry_run:
            try:
                await sync_to_async(self.store.upsert_region)(region)
            except Exception as e:
                self.errors.append(
                    log_error_with_context(e, scope="region", run_id=self.run_id, region_id=region.id)
                )
                self.stats.increment("regions_processed")
                return

        try:
            sub_regions = await self.catalog.list_sub_regions(region.id)
        except UpstreamError as e:
            self.errors.append(
                log_error_with_context(e, scope="region", run_id=self.run_id, region_id=region.id)
            )
            self.stats.increment("regions_processed")
            return

        if max_sub_regions is not None:
            sub_regions = sub_regions[:max_sub_regions]

        queue: asyncio.Queue = asyncio.Queue()
        for sub_region in sub_regions:
            queue.put_nowait(sub_region)

        breaker = RegionCircuitBreaker(region_id=region.id, threshold=self.failure_threshold)
        workers = [
            asyncio.create_task(self._worker(region, queue, breaker))
            for _ in range(min(self.concurrency, len(sub_regions)))
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                worker.cancel()

        if breaker.is_open:
            skipped = []
            while not queue.empty():
                skipped.append(queue.get_nowait().id)
            self.errors.append(self._short_circuit_entry(region, breaker.drain(), skipped))
        else:
            self.errors.extend(breaker.drain())

        # an interrupted region is not counted as processed
        self._check_stop()
        self.stats.increment("regions_processed")

        logger.info(
            f"Crawl run {self.run_id}: region {region.id} ({region.name}) done, "
            f"{len(sub_regions)} sub-regions"
        )

    async def _worker(
        self,
        region: RegionRecord,
        queue: asyncio.Queue,
        breaker: RegionCircuitBreaker,
    ) -> None:
        """Pull sub-regions until the queue drains, the breaker opens or a stop is requested."""
        while not self.stop_requested and not breaker.is_open:
            try:
                sub_region = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._process_sub_region(region, sub_region, breaker)

    async def _process_sub_region(
        self,
        region: RegionRecord,
        sub_region: SubRegionRecord,
        breaker: RegionCircuitBreaker,
    ) -> None:
        try:
            result = await self.fetcher.fetch(region, sub_region)
        except UpstreamError as e:
            entry = log_error_with_context(
                e,
                scope="sub_region",
                run_id=self.run_id,
                region_id=region.id,
                sub_region_id=sub_region.id,
            )
            breaker.record_failure(entry)
            return
        except Exception as e:
            self.errors.append(
                log_error_with_context(
                    e,
                    scope="sub_region",
                    run_id=self.run_id,
                    region_id=region.id,
                    sub_region_id=sub_region.id,
                )
            )
            return

        try:
            await sync_to_async(self._persist_batch)(sub_region, result)
        except Exception as e:
            self.errors.append(
                log_error_with_context(
                    e,
                    scope="sub_region",
                    run_id=self.run_id,
                    region_id=region.id,
                    sub_region_id=sub_region.id,
                )
            )
            return

        self.errors.extend(breaker.record_success())
        self.stats.increment("sub_regions_processed")

    def _persist_batch(self, sub_region: SubRegionRecord, result: FetchResult) -> None:
        """Upsert stations and run change detection for one sub-region batch."""
        if result.malformed:
            self.stats.increment("malformed_entries", result.malformed)

        if not self.dry_run:
            self.store.upsert_sub_region(sub_region)

        seen_stations = set()
        for entry in result.entries:
            station = entry.station
            if station.permit_number not in seen_stations:
                seen_stations.add(station.permit_number)
                self.stats.increment("stations_found")
                if not self.dry_run and self.store.upsert_station(station):
                    self.stats.increment("new_stations_added")

            try:
                outcome = self.detector.detect(entry.observation)
            except UnmappedFuelTypeError as e:
                logger.warning(f"Station {station.permit_number}: {e}")
                self.stats.increment("unmapped_descriptors")
                continue

            if outcome.changed:
                self.stats.increment("price_changes_detected")
            else:
                self.stats.increment("unchanged_prices")

    def _check_stop(self) -> None:
        if self.stop_requested:
            raise CrawlAbortedError("Crawl run aborted on request")

    def _short_circuit_entry(
        self,
        region: RegionRecord,
        failures: List[Dict[str, Any]],
        skipped: List[int],
    ) -> Dict[str, Any]:
        failed_ids = [f.get("sub_region_id") for f in failures]
        last = failures[-1] if failures else {}
        message = (
            f"Region {region.id} ({region.name}) short-circuited after "
            f"{len(failures)} consecutive sub-region failures; "
            f"{len(skipped)} sub-regions skipped"
        )
        logger.error(f"Crawl run {self.run_id}: {message}")
        return build_error_entry(
            None,
            scope="region",
            region_id=region.id,
            error_type="REGION_SHORT_CIRCUITED",
            message=message,
            details={
                "failed_sub_regions": failed_ids,
                "skipped_sub_regions": skipped,
                "last_error": last,
            },
        )

    async def _finalize(self, status: str, started_at) -> CrawlRunResult:
        counts = self.stats.to_dict()
        try:
            completed_at = await sync_to_async(self.ledger.finalize)(
                self.run_id, status, counts, self.errors
            )
        except RunAlreadyFinalizedError as e:
            # lease expired and another trigger already closed this run
            logger.error(f"Crawl run {self.run_id} could not be finalized: {e}")
            status = ScraperRunStatus.FAILED
            completed_at = timezone.now()

        self.state = (
            OrchestratorState.COMPLETED
            if status == ScraperRunStatus.COMPLETED
            else OrchestratorState.FAILED
        )

        logger.info(
            f"Crawl run {self.run_id} {status}: "
            f"{counts['regions_processed']} regions, "
            f"{counts['sub_regions_processed']} sub-regions, "
            f"{counts['price_changes_detected']} changes, "
            f"{len(self.errors)} errors"
        )
        add_crawl_breadcrumb(f"Crawl run {status}", run_id=self.run_id)

        return CrawlRunResult(
            run_id=self.run_id,
            status=str(status),
            started_at=started_at,
            completed_at=completed_at,
            counts=counts,
            errors=list(self.errors),
            dry_run=self.dry_run,
        )

    async def _close_client(self) -> None:
        if self._owns_client:
            await self.client.close()
