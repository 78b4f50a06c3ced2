"""
Celery configuration for the Fuel Price Crawler.

Crawls run on a dedicated "crawl" queue; Celery Beat triggers one crawl
per day (CELERY_BEAT_SCHEDULE in settings/base.py).
"""

import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("fuel_price_crawler")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Configure task queues
app.conf.task_queues = {
    "crawl": {
        "exchange": "crawl",
        "routing_key": "crawl",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

# Default task routing
app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

# Route the crawl to its own queue; one worker with concurrency 1 is enough
app.conf.task_routes = {
    "pricecrawler.tasks.run_price_crawl": {"queue": "crawl"},
}
