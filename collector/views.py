"""
Service health check endpoint for monitoring and load balancer checks.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.db.models import Q
from django.http import JsonResponse

from collector.models import CollectionTask, HealthStatus, TaskStatus, VideoSource

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = "collector:health_check"


def check_cache() -> str:
    """
    Round-trip a value through the configured cache.

    Returns:
        "connected" or "error"
    """
    try:
        cache.set(HEALTH_CACHE_KEY, "ok", 10)
        if cache.get(HEALTH_CACHE_KEY) == "ok":
            return "connected"
        return "error"
    except Exception as e:
        logger.warning(f"Cache health check failed: {e}")
        return "error"


def source_counts() -> dict:
    active = VideoSource.objects.filter(is_active=True)
    return {
        "total": VideoSource.objects.count(),
        "active": active.count(),
        "healthy": active.filter(
            Q(health__status=HealthStatus.HEALTHY) | Q(health__status=HealthStatus.SLOW)
        ).count(),
        "failing": active.filter(
            health__status__in=[HealthStatus.ERROR, HealthStatus.TIMEOUT]
        ).count(),
    }


def health_check(request):
    """
    Health check endpoint for the collector service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy", "degraded" or "unhealthy"
        - database: "connected" or "error"
        - cache: "connected" or "error"
        - sources: total / active / healthy / failing source counts
        - running_tasks: number of collection tasks currently running
        - last_completed_task: ISO timestamp of the last completed task

    Returns:
        JsonResponse: HTTP 200 for healthy or degraded, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    cache_status = check_cache()
    if cache_status != "connected" and status == "healthy":
        status = "degraded"

    sources = None
    running_tasks = 0
    last_completed_task = None
    if database_status == "connected":
        try:
            sources = source_counts()
            running_tasks = CollectionTask.objects.filter(status=TaskStatus.RUNNING).count()
            last = (
                CollectionTask.objects.filter(status=TaskStatus.COMPLETED, completed_at__isnull=False)
                .order_by("-completed_at")
                .first()
            )
            if last is not None:
                last_completed_task = last.completed_at.isoformat()
        except DatabaseError as e:
            logger.error(f"Health check queries failed: {e}")
            status = "unhealthy"
            http_status = 503

    if sources and sources["active"] and sources["healthy"] == 0 and status == "healthy":
        status = "degraded"

    return JsonResponse({
        "status": status,
        "database": database_status,
        "cache": cache_status,
        "sources": sources,
        "running_tasks": running_tasks,
        "last_completed_task": last_completed_task,
    }, status=http_status)
