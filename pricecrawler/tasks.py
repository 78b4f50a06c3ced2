"""
Celery tasks for the fuel price crawler.

- run_price_crawl: one complete crawl (scheduled daily by Celery Beat,
  see config/celery.py, or triggered on demand)

The scheduler is only a trigger; overlapping triggers are rejected by the
run ledger and reported as "skipped".
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import shared_task

from pricecrawler.exceptions import CrawlAlreadyRunningError
from pricecrawler.services.orchestrator import CrawlOrchestrator

logger = logging.getLogger(__name__)


def run_crawl(
    dry_run: bool = False,
    max_regions: Optional[int] = None,
    max_sub_regions: Optional[int] = None,
    orchestrator: Optional[CrawlOrchestrator] = None,
) -> Dict[str, Any]:
    """
    Run one crawl to completion on a fresh event loop.

    Returns:
        The run result dict, or {"status": "skipped", ...} when another run
        already holds the lease
    """
    orchestrator = orchestrator or CrawlOrchestrator()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(
            orchestrator.run_once(
                dry_run=dry_run,
                max_regions=max_regions,
                max_sub_regions_per_region=max_sub_regions,
            )
        )
    except CrawlAlreadyRunningError as e:
        logger.warning(f"Skipping crawl trigger: run {e.active_run_id} is still active")
        return {
            "status": "skipped",
            "reason": "already_running",
            "active_run_id": e.active_run_id,
        }
    finally:
        loop.close()

    return result.to_dict()


@shared_task(name="pricecrawler.tasks.run_price_crawl", bind=True)
def run_price_crawl(
    self,
    dry_run: bool = False,
    max_regions: Optional[int] = None,
    max_sub_regions: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Crawl worker task - one pass over every region and sub-region.

    Args:
        dry_run: Detect changes without writing to the database
        max_regions: Limit the number of regions crawled
        max_sub_regions: Limit the number of sub-regions per region

    Returns:
        Dict with run id, status, counters and errors
    """
    logger.info(f"Price crawl triggered (task {self.request.id})")
    result = run_crawl(
        dry_run=dry_run,
        max_regions=max_regions,
        max_sub_regions=max_sub_regions,
    )
    logger.info(f"Price crawl task {self.request.id} finished: {result['status']}")
    return result
