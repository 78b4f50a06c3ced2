"""
Price crawler REST API views.

Read-only access to crawl runs plus an on-demand crawl trigger.

Endpoints:
- GET  /api/v1/runs/          - Recent runs (newest first)
- GET  /api/v1/runs/latest/   - Most recent run
- GET  /api/v1/runs/<id>/     - One run with its full error list
- POST /api/v1/crawl/         - Queue a crawl

All endpoints require authentication.
"""

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from pricecrawler.api.throttling import CrawlTriggerThrottle
from pricecrawler.models import ScraperRun, ScraperRunStatus
from pricecrawler.services.crawl_types import COUNTER_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _run_to_dict(run: ScraperRun, include_errors: bool = False) -> dict:
    data = {
        'id': run.id,
        'status': run.status,
        'dry_run': run.dry_run,
        'started_at': run.started_at.isoformat() if run.started_at else None,
        'completed_at': run.completed_at.isoformat() if run.completed_at else None,
        'duration_seconds': run.duration_seconds,
        'counts': {counter: getattr(run, counter) for counter in COUNTER_FIELDS},
        'errors_total': len(run.errors or []),
    }
    if include_errors:
        data['errors'] = run.errors or []
    return data


@extend_schema(
    tags=['Runs'],
    summary='List crawl runs',
    parameters=[
        OpenApiParameter('limit', OpenApiTypes.INT, description='Max runs to return (default 20, max 100)'),
        OpenApiParameter('status', OpenApiTypes.STR, enum=['running', 'completed', 'failed']),
    ],
    responses={200: {'description': 'Recent crawl runs'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_runs(request):
    """
    List recent crawl runs, newest first.
    """
    try:
        limit = int(request.query_params.get('limit', DEFAULT_LIMIT))
    except (TypeError, ValueError):
        return Response(
            {'error': 'limit must be an integer'},
            status=status.HTTP_400_BAD_REQUEST
        )
    limit = max(1, min(limit, MAX_LIMIT))

    runs = ScraperRun.objects.order_by('-started_at', '-id')
    run_status = request.query_params.get('status')
    if run_status:
        if run_status not in ScraperRunStatus.values:
            return Response(
                {'error': f'Invalid status. Valid statuses: {", ".join(ScraperRunStatus.values)}'},
                status=status.HTTP_400_BAD_REQUEST
            )
        runs = runs.filter(status=run_status)

    return Response({
        'runs': [_run_to_dict(run) for run in runs[:limit]],
    })


@extend_schema(
    tags=['Runs'],
    summary='Get crawl run',
    responses={200: {'description': 'Run with counters and errors'}, 404: {'description': 'Run not found'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_run(request, run_id):
    """
    Get one crawl run including its structured error list.
    """
    try:
        run = ScraperRun.objects.get(id=run_id)
    except ScraperRun.DoesNotExist:
        return Response(
            {'error': 'Run not found'},
            status=status.HTTP_404_NOT_FOUND
        )

    return Response(_run_to_dict(run, include_errors=True))


@extend_schema(
    tags=['Runs'],
    summary='Get latest crawl run',
    responses={200: {'description': 'Most recent run'}, 404: {'description': 'No runs yet'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def latest_run(request):
    """
    Get the most recently started crawl run.
    """
    run = ScraperRun.objects.order_by('-started_at', '-id').first()
    if run is None:
        return Response(
            {'error': 'No runs yet'},
            status=status.HTTP_404_NOT_FOUND
        )

    return Response(_run_to_dict(run, include_errors=True))


@extend_schema(
    tags=['Crawl'],
    summary='Trigger a crawl',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'dry_run': {'type': 'boolean', 'default': False},
                'max_regions': {'type': 'integer'},
                'max_sub_regions': {'type': 'integer'},
            },
        }
    },
    responses={
        202: {'description': 'Crawl queued'},
        409: {'description': 'A crawl is already running'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([CrawlTriggerThrottle])
def trigger_crawl(request):
    """
    Queue a crawl on the crawl queue.

    Request body:
    {
        "dry_run": false,
        "max_regions": 2,
        "max_sub_regions": 10
    }

    The run ledger still rejects overlapping runs when the task starts;
    this check only avoids queueing a task that would be skipped.
    """
    from pricecrawler.tasks import run_price_crawl

    active = (
        ScraperRun.objects.filter(status=ScraperRunStatus.RUNNING)
        .values_list('id', flat=True)
        .first()
    )
    if active is not None:
        return Response(
            {'error': 'A crawl is already running', 'active_run_id': active},
            status=status.HTTP_409_CONFLICT
        )

    options = {'dry_run': bool(request.data.get('dry_run', False))}
    for key in ('max_regions', 'max_sub_regions'):
        value = request.data.get(key)
        if value is None:
            continue
        try:
            options[key] = int(value)
        except (TypeError, ValueError):
            return Response(
                {'error': f'{key} must be an integer'},
                status=status.HTTP_400_BAD_REQUEST
            )

    task = run_price_crawl.apply_async(kwargs=options, queue='crawl')
    logger.info(f"Queued price crawl task {task.id} ({options})")

    return Response(
        {'success': True, 'task_id': task.id, 'status': 'queued', **options},
        status=status.HTTP_202_ACCEPTED
    )
