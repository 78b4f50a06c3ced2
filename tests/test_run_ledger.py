"""
Tests for crawl run allocation and finalization.

- At most one active run (lease row + partial unique constraint)
- Finalize exactly once
- Abandoned leases expire
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from pricecrawler.exceptions import CrawlAlreadyRunningError, RunAlreadyFinalizedError
from pricecrawler.models import CrawlLease, ScraperRun, ScraperRunStatus
from pricecrawler.services.run_ledger import LEASE_NAME, DjangoRunLedger, InMemoryRunLedger

COUNTS = {
    "regions_processed": 2,
    "sub_regions_processed": 5,
    "stations_found": 40,
    "new_stations_added": 3,
    "price_changes_detected": 12,
    "unchanged_prices": 70,
    "unmapped_descriptors": 1,
    "malformed_entries": 0,
}


@pytest.mark.django_db
class TestDjangoRunLedger:

    def test_start_run_allocates_running_row_and_takes_lease(self):
        ledger = DjangoRunLedger()

        run_id = ledger.start_run(dry_run=True)

        run = ScraperRun.objects.get(id=run_id)
        assert run.status == ScraperRunStatus.RUNNING
        assert run.dry_run is True
        assert CrawlLease.objects.get(name=LEASE_NAME).run_id == run_id
        assert ledger.active_run_id() == run_id

    def test_overlapping_start_is_rejected(self):
        ledger = DjangoRunLedger()
        run_id = ledger.start_run()

        with pytest.raises(CrawlAlreadyRunningError) as exc_info:
            ledger.start_run()

        assert exc_info.value.active_run_id == run_id
        assert ScraperRun.objects.count() == 1

    def test_finalize_records_counts_and_releases_lease(self):
        ledger = DjangoRunLedger()
        run_id = ledger.start_run()
        errors = [{"type": "TRANSIENT_UPSTREAM_ERROR", "scope": "sub_region"}]

        completed_at = ledger.finalize(run_id, ScraperRunStatus.COMPLETED, COUNTS, errors)

        run = ScraperRun.objects.get(id=run_id)
        assert run.status == ScraperRunStatus.COMPLETED
        assert run.completed_at == completed_at
        assert run.price_changes_detected == 12
        assert run.errors == errors
        assert CrawlLease.objects.get(name=LEASE_NAME).run_id is None
        assert ledger.active_run_id() is None

    def test_finalize_happens_exactly_once(self):
        ledger = DjangoRunLedger()
        run_id = ledger.start_run()
        ledger.finalize(run_id, ScraperRunStatus.FAILED, COUNTS, [])

        with pytest.raises(RunAlreadyFinalizedError):
            ledger.finalize(run_id, ScraperRunStatus.COMPLETED, COUNTS, [])

        assert ScraperRun.objects.get(id=run_id).status == ScraperRunStatus.FAILED

    def test_cannot_finalize_as_running(self):
        ledger = DjangoRunLedger()
        run_id = ledger.start_run()

        with pytest.raises(ValueError):
            ledger.finalize(run_id, ScraperRunStatus.RUNNING, COUNTS, [])

    def test_next_run_allowed_after_finalize(self):
        ledger = DjangoRunLedger()
        first = ledger.start_run()
        ledger.finalize(first, ScraperRunStatus.COMPLETED, COUNTS, [])

        second = ledger.start_run()

        assert second != first
        assert ledger.active_run_id() == second

    def test_expired_lease_is_recovered(self, settings):
        settings.FUEL_CRAWLER_LEASE_TTL_MINUTES = 60
        ledger = DjangoRunLedger()
        stale_id = ledger.start_run()
        CrawlLease.objects.filter(name=LEASE_NAME).update(
            acquired_at=timezone.now() - timedelta(hours=2)
        )

        new_id = ledger.start_run()

        stale = ScraperRun.objects.get(id=stale_id)
        assert stale.status == ScraperRunStatus.FAILED
        assert stale.errors[-1]["type"] == "LEASE_EXPIRED"
        assert ledger.active_run_id() == new_id

    def test_database_allows_only_one_running_row(self):
        ScraperRun.objects.create(status=ScraperRunStatus.RUNNING)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ScraperRun.objects.create(status=ScraperRunStatus.RUNNING)

    def test_running_row_outside_lease_still_blocks(self):
        orphan = ScraperRun.objects.create(status=ScraperRunStatus.RUNNING)

        with pytest.raises(CrawlAlreadyRunningError) as exc_info:
            DjangoRunLedger().start_run()

        assert exc_info.value.active_run_id == orphan.id


class TestInMemoryRunLedger:

    def test_same_lifecycle_semantics(self):
        ledger = InMemoryRunLedger()
        run_id = ledger.start_run()

        with pytest.raises(CrawlAlreadyRunningError):
            ledger.start_run()

        ledger.finalize(run_id, "completed", COUNTS, [])
        with pytest.raises(RunAlreadyFinalizedError):
            ledger.finalize(run_id, "failed", COUNTS, [])

        assert ledger.runs[run_id]["status"] == "completed"
        assert ledger.start_run() == run_id + 1
