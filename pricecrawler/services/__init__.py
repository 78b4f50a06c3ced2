"""
Crawl pipeline services.

- catalog: region / sub-region listings
- price_fetcher: price entries for one (region, sub-region)
- change_detector: change-only persistence decisions
- price_store: stations and the append-only price ledger
- run_ledger: run allocation, lease and finalize-once
- orchestrator: one full crawl
- notifier: signed completion webhook
"""
