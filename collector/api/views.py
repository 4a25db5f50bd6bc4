"""
Catalog and collection control API views.

This module provides endpoints for:
- Federated catalog reads (live aggregate or catalog store only)
- Collection task creation and control (pause, resume, cancel)
- Per-source crawls and category sync
- Source health monitoring
- Broken play URL reports

Control endpoints require authentication and have rate limiting.
"""

import logging
from typing import Any, Dict, Optional

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from collector.api.throttling import CatalogReadThrottle, ReportBrokenThrottle, TaskControlThrottle
from collector.exceptions import (
    CollectorError,
    InvalidTaskConfig,
    InvalidTransition,
    UnknownSource,
    UnknownTask,
)
from collector.models import CatalogItem, CollectionTask, TaskType
from collector.services import source_registry
from collector.services.aggregator import ACTION_SEARCH, AggregateOptions, Aggregator, CatalogQuery
from collector.services.catalog_store import entry_from_item
from collector.services.task_engine import TaskEngine
from collector.services.url_validator import report_broken_urls
from collector.tasks import sync_source_categories as sync_categories_task

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    InvalidTaskConfig: status.HTTP_400_BAD_REQUEST,
    UnknownSource: status.HTTP_404_NOT_FOUND,
    UnknownTask: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
}

TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def _get_task_engine():
    return TaskEngine()


def _get_aggregator():
    return Aggregator()


def _error_response(error: CollectorError) -> Response:
    code = ERROR_STATUS_CODES.get(type(error), status.HTTP_400_BAD_REQUEST)
    return Response({'success': False, 'error': str(error)}, status=code)


def _flag(value: Optional[str]) -> bool:
    return str(value or '').strip().lower() in TRUE_VALUES


def _optional_int(value: Optional[str], name: str) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidTaskConfig(f'{name} must be an integer')


def _serialize_task(task: CollectionTask, include_logs: bool = False) -> Dict[str, Any]:
    data = {
        'id': str(task.id),
        'task_type': task.task_type,
        'status': task.status,
        'config': task.config,
        'progress': task.progress,
        'checkpoint': task.checkpoint,
        'last_error': task.last_error,
        'created_by': task.created_by,
        'created_at': task.created_at.isoformat(),
        'started_at': task.started_at.isoformat() if task.started_at else None,
        'paused_at': task.paused_at.isoformat() if task.paused_at else None,
        'completed_at': task.completed_at.isoformat() if task.completed_at else None,
        'duration_seconds': task.duration_seconds,
    }
    if include_logs:
        data['logs'] = [
            {
                'level': entry.level,
                'action': entry.action,
                'message': entry.message,
                'vod_id': entry.vod_id,
                'vod_name': entry.vod_name,
                'created_at': entry.created_at.isoformat(),
            }
            for entry in task.logs.order_by('-created_at', '-id')[:50]
        ]
    return data


# ============================================================
# Catalog Endpoints
# ============================================================

@extend_schema(
    tags=['Catalog'],
    summary='Query the catalog',
    description='''
    Fan the query out to every healthy source and return the merged,
    deduplicated items. Sources that fail or miss the deadline are listed in
    failed_sources; the response is still 200 as long as the query is valid.

    With cache_only=true the catalog store is queried instead and no source
    is contacted.
    ''',
    parameters=[
        OpenApiParameter(name='action', type=str, enum=['list', 'search', 'detail'], default='list'),
        OpenApiParameter(name='category_id', type=int, description='Canonical category id'),
        OpenApiParameter(name='keyword', type=str, description='Search keyword (action=search)'),
        OpenApiParameter(name='ids', type=str, description='Comma-separated catalog ids (cache_only) or source vod ids'),
        OpenApiParameter(name='page', type=int, default=1),
        OpenApiParameter(name='area', type=str),
        OpenApiParameter(name='year', type=str),
        OpenApiParameter(name='hours', type=int, description='Only items updated in the last N hours'),
        OpenApiParameter(name='cache_only', type=bool, default=False),
        OpenApiParameter(name='include_low_priority', type=bool, default=False),
        OpenApiParameter(name='timeout_ms', type=int),
    ],
    responses={
        200: {
            'description': 'Merged catalog items',
            'content': {
                'application/json': {
                    'example': {
                        'success': True,
                        'items': [{'id': 'a1b2c3d4e5f60718', 'title': '某剧', 'year': '2024', 'category_id': 2}],
                        'total': 1,
                        'page': 1,
                        'succeeded_sources': ['source-a', 'source-b'],
                        'failed_sources': ['source-c'],
                        'degraded': True,
                        'from_cache': False,
                    }
                }
            }
        },
        400: {'description': 'Invalid query parameters'},
    },
)
@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([CatalogReadThrottle])
def catalog_list(request):
    """
    Query the catalog across all sources.

    A failing source degrades the answer, it never fails the request.
    """
    params = request.query_params
    try:
        action = params.get('action', 'list')
        if params.get('keyword') and action == 'list':
            action = ACTION_SEARCH
        ids = [value for value in params.get('ids', '').split(',') if value]
        query = CatalogQuery(
            action=action,
            category_id=_optional_int(params.get('category_id'), 'category_id'),
            keyword=params.get('keyword', ''),
            page=_optional_int(params.get('page'), 'page') or 1,
            ids=ids,
            area=params.get('area', ''),
            year=params.get('year', ''),
            hours=_optional_int(params.get('hours'), 'hours'),
        )
        options = AggregateOptions(
            timeout_ms=_optional_int(params.get('timeout_ms'), 'timeout_ms'),
            include_low_priority_sources=_flag(params.get('include_low_priority')),
            cache_only=_flag(params.get('cache_only')),
        )
    except (InvalidTaskConfig, ValueError) as e:
        return Response({'success': False, 'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    if query.action == ACTION_SEARCH and not query.keyword:
        return Response(
            {'success': False, 'error': 'keyword is required for search'},
            status=status.HTTP_400_BAD_REQUEST,
        )

    result = _get_aggregator().aggregate(query, options)

    return Response({
        'success': True,
        'items': [item.to_dict() for item in result.items],
        'total': result.total,
        'page': query.page,
        'succeeded_sources': result.succeeded_sources,
        'failed_sources': result.failed_sources,
        'errors': result.errors,
        'degraded': result.degraded,
        'from_cache': result.from_cache,
    })


@extend_schema(
    tags=['Catalog'],
    summary='Get a catalog item',
    description='Get one stored catalog item with all of its merged play sources.',
    responses={
        200: {'description': 'Catalog item'},
        404: {'description': 'Item not found or invalid'},
    },
)
@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([CatalogReadThrottle])
def catalog_detail(request, item_id):
    """Get a stored catalog item."""
    item = CatalogItem.objects.filter(pk=item_id, is_valid=True).first()
    if item is None:
        return Response({'error': 'Item not found'}, status=status.HTTP_404_NOT_FOUND)

    data = entry_from_item(item).to_dict()
    data.update({
        'episode_count': item.episode_count,
        'source_vod_ids': item.source_vod_ids,
        'metadata_source_name': item.metadata_source_name,
        'updated_at': item.updated_at.isoformat(),
    })
    return Response(data)


@extend_schema(
    tags=['Catalog'],
    summary='Report broken play URLs',
    description='''
    Remove play URLs reported as broken from a catalog item. An item left
    without any play source is marked invalid and disappears from the catalog.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'urls': {'type': 'array', 'items': {'type': 'string', 'format': 'uri'}},
            },
            'required': ['urls'],
        }
    },
    responses={
        200: {
            'description': 'Report applied',
            'content': {
                'application/json': {
                    'example': {'id': 'a1b2c3d4e5f60718', 'removed': 2, 'remaining_episodes': 10, 'is_valid': True}
                }
            }
        },
        400: {'description': 'Missing urls'},
        404: {'description': 'Item not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReportBrokenThrottle])
def report_broken(request, item_id):
    """
    Report broken play URLs of a catalog item.

    Request body:
    {
        "urls": ["https://cdn.example.com/1.m3u8"]
    }
    """
    urls = request.data.get('urls')
    if not urls or not isinstance(urls, list):
        return Response(
            {'success': False, 'error': 'urls must be a non-empty list'},
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        result = report_broken_urls(item_id, urls, reported_by=request.user.get_username())
    except CatalogItem.DoesNotExist:
        return Response({'error': 'Item not found'}, status=status.HTTP_404_NOT_FOUND)

    return Response({'success': True, **result})


# ============================================================
# Task Endpoints
# ============================================================

@extend_schema(
    tags=['Tasks'],
    summary='Create a collection task',
    description='''
    Create a collection task and, unless start is false, dispatch it to a
    worker right away.

    task_type is one of full, incremental, category, source, shorts.
    config accepts source_ids, category_ids, page_start, page_end (or
    pageRange), max_videos, hours and include_low_priority.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'task_type': {'type': 'string', 'enum': list(TaskType.values)},
                'config': {'type': 'object'},
                'start': {'type': 'boolean', 'default': True},
            },
            'required': ['task_type'],
        }
    },
    responses={
        201: {'description': 'Task created'},
        400: {'description': 'Invalid task configuration'},
        404: {'description': 'Unknown source in config'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def create_task(request):
    """
    Create (and start) a collection task.

    Request body:
    {
        "task_type": "category",
        "config": {"category_ids": [2], "page_end": 10},
        "start": true
    }
    """
    task_type = request.data.get('task_type')
    config = request.data.get('config') or {}
    start = request.data.get('start', True)

    engine = _get_task_engine()
    try:
        task = engine.create_task(task_type, config, created_by=request.user.get_username())
        if start:
            task = engine.start_task(task.id)
    except CollectorError as e:
        return _error_response(e)

    logger.info(f"Task {task.id} ({task.task_type}) created by {request.user.get_username()}")
    return Response(_serialize_task(task), status=status.HTTP_201_CREATED)


@extend_schema(
    tags=['Tasks'],
    summary='Get collection task status',
    description='Get the status, progress, checkpoint and recent log entries of a task.',
    parameters=[
        OpenApiParameter(name='task_id', type=OpenApiTypes.UUID, location=OpenApiParameter.PATH),
    ],
    responses={
        200: {
            'description': 'Task status',
            'content': {
                'application/json': {
                    'example': {
                        'id': '6f1c0b9e-1d2a-4c55-9a43-1f0f2f1b9e11',
                        'task_type': 'full',
                        'status': 'running',
                        'progress': {'currentPage': 12, 'totalPages': 40, 'processedCount': 240},
                    }
                }
            }
        },
        404: {'description': 'Task not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def task_detail(request, task_id):
    """Get status of a collection task."""
    try:
        task = _get_task_engine().get_task(task_id)
    except CollectorError as e:
        return _error_response(e)
    return Response(_serialize_task(task, include_logs=True))


def _control(request, task_id, operation: str):
    engine = _get_task_engine()
    try:
        task = getattr(engine, f'{operation}_task')(task_id)
    except CollectorError as e:
        return _error_response(e)
    logger.info(f"Task {task.id} {operation} requested by {request.user.get_username()}")
    return Response(_serialize_task(task))


@extend_schema(
    tags=['Tasks'],
    summary='Pause a collection task',
    description='Pause a running task. The worker stops at the next page boundary.',
    request=None,
    responses={200: {'description': 'Task paused'}, 404: {'description': 'Task not found'},
               409: {'description': 'Task cannot be paused from its current status'}},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def pause_task(request, task_id):
    return _control(request, task_id, 'pause')


@extend_schema(
    tags=['Tasks'],
    summary='Resume a collection task',
    description='Resume a paused task, or retry a failed one, from its checkpoint.',
    request=None,
    responses={200: {'description': 'Task resumed'}, 404: {'description': 'Task not found'},
               409: {'description': 'Task cannot be resumed from its current status'}},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def resume_task(request, task_id):
    return _control(request, task_id, 'resume')


@extend_schema(
    tags=['Tasks'],
    summary='Cancel a collection task',
    description='Cancel a task. Pages already committed stay in the catalog.',
    request=None,
    responses={200: {'description': 'Task cancelled'}, 404: {'description': 'Task not found'},
               409: {'description': 'Task already finished'}},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def cancel_task(request, task_id):
    return _control(request, task_id, 'cancel')


# ============================================================
# Source Endpoints
# ============================================================

@extend_schema(
    tags=['Sources'],
    summary='Crawl one source',
    description='Create and start a source task for a single source.',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'page_start': {'type': 'integer', 'default': 1},
                'page_end': {'type': 'integer', 'default': -1},
                'max_videos': {'type': 'integer', 'default': 0},
                'category_ids': {'type': 'array', 'items': {'type': 'integer'}},
            },
        }
    },
    responses={
        202: {'description': 'Source task dispatched'},
        400: {'description': 'Invalid configuration'},
        404: {'description': 'Source not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def crawl_source(request, source_id):
    """Start a source task for one source."""
    config = dict(request.data or {})
    config['source_ids'] = [str(source_id)]

    engine = _get_task_engine()
    try:
        source = source_registry.get_source(source_id)
        task = engine.create_task(TaskType.SOURCE, config, created_by=request.user.get_username())
        task = engine.start_task(task.id)
    except CollectorError as e:
        return _error_response(e)

    return Response({
        'success': True,
        'source': source.name,
        'task_id': str(task.id),
        'status': task.status,
        'status_url': f'/api/v1/tasks/{task.id}/',
    }, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Sources'],
    summary='Sync source categories',
    description="Fetch the source's own category list and learn category mappings.",
    request=None,
    responses={
        202: {'description': 'Sync queued'},
        404: {'description': 'Source not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([TaskControlThrottle])
def sync_categories(request, source_id):
    """Queue a category sync for one source."""
    try:
        source = source_registry.get_source(source_id)
    except CollectorError as e:
        return _error_response(e)

    job = sync_categories_task.delay(str(source.id))

    return Response({
        'success': True,
        'source': source.name,
        'celery_task_id': job.id,
        'status': 'queued',
    }, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Health'],
    summary='Get source health status',
    description='Get health status for every configured source.',
    responses={
        200: {
            'description': 'Health status for all sources',
            'content': {
                'application/json': {
                    'example': {
                        'overall_status': 'degraded',
                        'sources': [
                            {'name': 'source-a', 'status': 'healthy', 'avg_response_time_ms': 420},
                            {'name': 'source-b', 'status': 'timeout', 'consecutive_failures': 2},
                        ],
                    }
                }
            }
        },
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def sources_health(request):
    """
    Get health status for all sources.

    The overall status is degraded when any active source is not healthy.
    """
    sources = source_registry.health_snapshot()

    overall_status = 'healthy'
    for source in sources:
        if source['is_active'] and source['status'] not in ('healthy', 'unknown'):
            overall_status = 'degraded'
            break

    return Response({
        'overall_status': overall_status,
        'sources': sources,
    })
