"""
Price crawler REST API URL configuration.

Endpoints:
- GET  /api/v1/runs/          - List recent runs
- GET  /api/v1/runs/latest/   - Latest run
- GET  /api/v1/runs/<id>/     - Run detail
- POST /api/v1/crawl/         - Queue a crawl
"""

from django.urls import path

from pricecrawler.api.views import (
    get_run,
    latest_run,
    list_runs,
    trigger_crawl,
)

app_name = 'pricecrawler_api'

urlpatterns = [
    path('runs/', list_runs, name='list_runs'),
    path('runs/latest/', latest_run, name='latest_run'),
    path('runs/<int:run_id>/', get_run, name='get_run'),
    path('crawl/', trigger_crawl, name='trigger_crawl'),
]
