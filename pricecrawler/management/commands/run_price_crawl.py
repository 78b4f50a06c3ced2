"""
Management command to run one fuel price crawl in the foreground.

Usage:
    python manage.py run_price_crawl
    python manage.py run_price_crawl --dry-run --max-regions 1 --max-sub-regions 5
    python manage.py run_price_crawl --json

SIGINT / SIGTERM request a graceful abort: the current units finish, the
run is finalized as failed with an "aborted" error entry.
"""

import json
import signal

from django.core.management.base import BaseCommand, CommandError

from pricecrawler.services.orchestrator import CrawlOrchestrator
from pricecrawler.tasks import run_crawl


class Command(BaseCommand):
    help = "Crawl every region / sub-region once and record price changes"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Detect changes without writing stations or prices",
        )
        parser.add_argument(
            "--max-regions",
            type=int,
            default=None,
            help="Only crawl the first N regions",
        )
        parser.add_argument(
            "--max-sub-regions",
            type=int,
            default=None,
            help="Only crawl the first N sub-regions of each region",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the run result as JSON",
        )

    def handle(self, *args, **options):
        orchestrator = CrawlOrchestrator()

        def _stop(signum, frame):
            self.stderr.write(self.style.WARNING(
                f"Received signal {signum}, stopping after current work..."
            ))
            orchestrator.request_stop()

        previous = {
            sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            result = run_crawl(
                dry_run=options["dry_run"],
                max_regions=options["max_regions"],
                max_sub_regions=options["max_sub_regions"],
                orchestrator=orchestrator,
            )
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        if options["json"]:
            self.stdout.write(json.dumps(result, indent=2, default=str))

        if result["status"] == "skipped":
            raise CommandError(f"Crawl run {result['active_run_id']} is already running")

        if not options["json"]:
            self._print_summary(result)

        if result["status"] != "completed":
            raise CommandError(f"Crawl run {result['run_id']} failed")

    def _print_summary(self, result):
        self.stdout.write(f"Run {result['run_id']}: {result['status']}")
        for counter, value in result["counts"].items():
            self.stdout.write(f"  {counter}: {value}")

        if result["errors"]:
            self.stdout.write(self.style.WARNING(f"  errors: {result['errors_total']}"))
            for error in result["errors"][:10]:
                self.stdout.write(f"    [{error.get('type')}] {error.get('message')}")
        else:
            self.stdout.write(self.style.SUCCESS("  no errors"))
