"""
Crawl run lifecycle persistence.

start_run() allocates a ScraperRun only after locking the lease row inside
a transaction, so at most one run is active at a time. finalize() moves a
RUNNING run to COMPLETED or FAILED exactly once and releases the lease in
the same transaction.

A lease held longer than FUEL_CRAWLER_LEASE_TTL_MINUTES by a run that never
finalized (worker killed, host lost) is treated as abandoned: that run is
marked FAILED with a lease_expired error and the new run proceeds.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from pricecrawler.exceptions import CrawlAlreadyRunningError, RunAlreadyFinalizedError

logger = logging.getLogger(__name__)

LEASE_NAME = "price_crawl"


def lease_ttl() -> timedelta:
    return timedelta(minutes=getattr(settings, "FUEL_CRAWLER_LEASE_TTL_MINUTES", 180))


def lease_expired_error(run_id, now: datetime) -> Dict[str, Any]:
    return {
        "type": "LEASE_EXPIRED",
        "scope": "run",
        "message": f"Run {run_id} held the crawl lease past its TTL and was abandoned",
        "occurred_at": now.isoformat(),
    }


class RunLedger(ABC):
    """Allocation and finalization of crawl runs."""

    @abstractmethod
    def start_run(self, dry_run: bool = False) -> Any:
        """
        Allocate a new RUNNING run and return its id.

        Raises:
            CrawlAlreadyRunningError: when another run holds the lease
        """

    @abstractmethod
    def finalize(
        self,
        run_id: Any,
        status: str,
        counts: Dict[str, int],
        errors: List[Dict[str, Any]],
    ) -> datetime:
        """
        Record the final status, counters and errors; returns completed_at.

        Raises:
            RunAlreadyFinalizedError: when the run is not RUNNING
        """

    @abstractmethod
    def active_run_id(self) -> Optional[Any]:
        pass


class DjangoRunLedger(RunLedger):
    """Ledger backed by the scraper_runs and crawl_leases tables."""

    def __init__(self, lease_name: str = LEASE_NAME):
        self.lease_name = lease_name

    def start_run(self, dry_run: bool = False) -> int:
        from pricecrawler.models import CrawlLease, ScraperRun, ScraperRunStatus

        now = timezone.now()
        try:
            with transaction.atomic():
                CrawlLease.objects.get_or_create(name=self.lease_name)
                lease = CrawlLease.objects.select_for_update().get(name=self.lease_name)

                if lease.run_id is not None:
                    held = ScraperRun.objects.filter(
                        id=lease.run_id, status=ScraperRunStatus.RUNNING
                    ).first()
                    if held is not None:
                        if not lease.is_expired(lease_ttl(), now):
                            raise CrawlAlreadyRunningError(held.id)
                        self._abandon(held, now)

                run = ScraperRun.objects.create(
                    status=ScraperRunStatus.RUNNING,
                    started_at=now,
                    dry_run=dry_run,
                )
                lease.run = run
                lease.acquired_at = now
                lease.save(update_fields=["run", "acquired_at"])

        except IntegrityError as e:
            # one_running_scraper_run: a RUNNING row exists outside the lease
            active = self.active_run_id()
            raise CrawlAlreadyRunningError(active) from e

        logger.info(f"Started crawl run {run.id}")
        return run.id

    def finalize(
        self,
        run_id: int,
        status: str,
        counts: Dict[str, int],
        errors: List[Dict[str, Any]],
    ) -> datetime:
        from pricecrawler.models import CrawlLease, ScraperRun, ScraperRunStatus

        if status not in (ScraperRunStatus.COMPLETED, ScraperRunStatus.FAILED):
            raise ValueError(f"Cannot finalize a run as {status!r}")

        completed_at = timezone.now()
        with transaction.atomic():
            updated = ScraperRun.objects.filter(
                id=run_id, status=ScraperRunStatus.RUNNING
            ).update(
                status=status,
                completed_at=completed_at,
                errors=errors,
                **counts,
            )
            if updated != 1:
                raise RunAlreadyFinalizedError(f"Run {run_id} is not running")

            CrawlLease.objects.filter(name=self.lease_name, run_id=run_id).update(
                run=None, acquired_at=None
            )

        logger.info(f"Finalized crawl run {run_id} as {status}")
        return completed_at

    def active_run_id(self) -> Optional[int]:
        from pricecrawler.models import ScraperRun, ScraperRunStatus

        return (
            ScraperRun.objects.filter(status=ScraperRunStatus.RUNNING)
            .values_list("id", flat=True)
            .first()
        )

    @staticmethod
    def _abandon(run, now: datetime) -> None:
        from pricecrawler.models import ScraperRunStatus

        logger.warning(f"Crawl lease for run {run.id} expired, marking it failed")
        run.status = ScraperRunStatus.FAILED
        run.completed_at = now
        run.errors = list(run.errors or []) + [lease_expired_error(run.id, now)]
        run.save(update_fields=["status", "completed_at", "errors"])


class InMemoryRunLedger(RunLedger):
    """Process-local ledger with the same lease semantics."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._guard = threading.Lock()
        self.runs: Dict[int, Dict[str, Any]] = {}
        self._active: Optional[int] = None

    def start_run(self, dry_run: bool = False) -> int:
        with self._guard:
            if self._active is not None:
                raise CrawlAlreadyRunningError(self._active)
            run_id = next(self._ids)
            self.runs[run_id] = {
                "id": run_id,
                "status": "running",
                "started_at": timezone.now(),
                "completed_at": None,
                "counts": {},
                "errors": [],
                "dry_run": dry_run,
            }
            self._active = run_id
            return run_id

    def finalize(
        self,
        run_id: int,
        status: str,
        counts: Dict[str, int],
        errors: List[Dict[str, Any]],
    ) -> datetime:
        if status not in ("completed", "failed"):
            raise ValueError(f"Cannot finalize a run as {status!r}")

        with self._guard:
            run = self.runs.get(run_id)
            if run is None or run["status"] != "running":
                raise RunAlreadyFinalizedError(f"Run {run_id} is not running")
            completed_at = timezone.now()
            run.update(
                status=status,
                completed_at=completed_at,
                counts=dict(counts),
                errors=list(errors),
            )
            if self._active == run_id:
                self._active = None
            return completed_at

    def active_run_id(self) -> Optional[int]:
        return self._active
