"""
Celery tasks for the VOD collector.

- run_collection_task: Worker task executing a CollectionTask from its checkpoint
- probe_sources: Periodic health probe of every active source
- sync_source_categories: Learn category mappings from a source's taxonomy
- schedule_incremental_collection: Periodic incremental collection
- recover_stalled_tasks: Re-dispatch running tasks whose worker disappeared
- cleanup_collection_history: Retention pruning of tasks and logs
- validate_play_urls: Periodic play URL check
"""

import logging
from typing import Any, Dict

from celery import shared_task
from django.conf import settings

from collector.exceptions import CollectorError
from collector.fetchers.source_client import SourceFetchError
from collector.models import CollectionTask, TaskStatus, TaskType
from collector.services import source_registry
from collector.services.task_engine import TaskEngine
from collector.services.url_validator import validate_catalog_batch

logger = logging.getLogger(__name__)


@shared_task(name="collector.tasks.run_collection_task", bind=True, acks_late=True)
def run_collection_task(self, task_id: str) -> Dict[str, Any]:
    """
    Execute a collection task until it completes, pauses, is cancelled, or
    yields its worker.

    Args:
        task_id: UUID of the CollectionTask

    Returns:
        Dict with status, stop reason and progress
    """
    logger.info(f"Executing collection task {task_id}")

    try:
        return TaskEngine().execute(task_id)
    except CollectorError as e:
        logger.error(f"Collection task {task_id} not executable: {e}")
        return {"task_id": task_id, "status": "failed", "error": str(e)}


@shared_task(name="collector.tasks.probe_sources")
def probe_sources() -> Dict[str, Any]:
    """
    Periodic task probing every active source.

    Runs every 10 minutes via Celery Beat.
    """
    logger.info("Probing sources...")
    return source_registry.probe_all_sources()


@shared_task(name="collector.tasks.sync_source_categories", bind=True)
def sync_source_categories(self, source_id: str) -> Dict[str, Any]:
    """
    Fetch a source's category taxonomy and store learned mappings.

    Args:
        source_id: UUID of the VideoSource
    """
    try:
        source = source_registry.get_source(source_id)
    except CollectorError as e:
        logger.error(str(e))
        return {"source_id": source_id, "status": "failed", "error": str(e)}

    try:
        summary = source_registry.sync_source_categories(source)
    except (SourceFetchError, ValueError) as e:
        logger.warning(f"Category sync failed for {source.name}: {e}")
        return {"source_id": source_id, "status": "failed", "error": str(e)}

    return {"source_id": source_id, "source_name": source.name, "status": "completed", **summary}


@shared_task(name="collector.tasks.schedule_incremental_collection")
def schedule_incremental_collection(hours: int = 24, max_pages: int = 5) -> Dict[str, Any]:
    """
    Start an incremental collection unless one is already in flight.

    Runs hourly via Celery Beat.

    Args:
        hours: Only items updated within this window
        max_pages: Pages per source
    """
    in_flight = CollectionTask.objects.filter(
        task_type=TaskType.INCREMENTAL,
        status__in=[TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.PAUSED],
    ).first()
    if in_flight is not None:
        logger.info(f"Incremental task {in_flight.id} still {in_flight.status}, not scheduling")
        return {"status": "skipped", "task_id": str(in_flight.id)}

    engine = TaskEngine()
    task = engine.create_task(
        TaskType.INCREMENTAL,
        {"hours": hours, "page_end": max_pages},
        created_by="scheduler",
    )
    engine.start_task(task.id)
    logger.info(f"Scheduled incremental collection {task.id}")
    return {"status": "dispatched", "task_id": str(task.id)}


@shared_task(name="collector.tasks.recover_stalled_tasks")
def recover_stalled_tasks(stale_minutes: int = 30) -> Dict[str, Any]:
    recovered = TaskEngine().recover_stalled_tasks(stale_minutes=stale_minutes)
    return {"recovered": recovered}


@shared_task(name="collector.tasks.cleanup_collection_history")
def cleanup_collection_history() -> Dict[str, Any]:
    """
    Delete terminal tasks and log entries past their retention windows.

    Runs daily via Celery Beat.
    """
    return TaskEngine().cleanup_old_tasks(
        days=getattr(settings, "COLLECTOR_TASK_RETENTION_DAYS", 30),
        log_days=getattr(settings, "COLLECTOR_LOG_RETENTION_DAYS", 7),
    )


@shared_task(name="collector.tasks.validate_play_urls")
def validate_play_urls(limit: int = 100) -> Dict[str, Any]:
    return validate_catalog_batch(limit=limit)
