"""
Collection task engine.

Runs bulk collection over sources and pages with a resumable checkpoint and
operator controls.

State machine (see collector.models.TASK_TRANSITIONS):

    pending -> running -> completed
                  |  ^
                  v  |
                paused           running/paused/pending -> cancelled
                                 running -> failed -> running (retry)

Checkpoint layout, persisted after every page:

    {
        "currentSourceId": "<uuid>",
        "currentPage": 7,
        "sources": {
            "<stream key>": {"source_id": "<uuid>", "category_id": "13",
                             "page": 7, "done": false, "total_pages": 40,
                             "errors": 0},
        },
    }

A stream is one source, or one (source, raw category) pair for
category-scoped tasks. Each stream owns its own page cursor, so bounded
concurrency across sources stays correct.

Each page is fetched and parsed outside any transaction, then its upserts,
counters and cursor are committed in a single transaction holding the task
row lock. A page at or below the committed cursor is never counted again,
which makes redoing a page after an interruption harmless.

Usage:
    engine = TaskEngine()
    task = engine.create_task("incremental", {"hours": 24})
    engine.start_task(task.id)      # dispatches run_collection_task
    engine.pause_task(task.id)
    engine.resume_task(task.id)
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DataError, DatabaseError, IntegrityError, connections, transaction
from django.db.models import F
from django.utils import timezone

from collector.exceptions import InvalidTaskConfig, InvalidTransition, UnknownTask
from collector.fetchers.source_client import ACTION_DETAIL, SourceClient, build_url
from collector.models import (
    TERMINAL_TASK_STATUSES,
    CategoryMapping,
    CollectionLogEntry,
    CollectionTask,
    LogLevel,
    TaskStatus,
    TaskType,
    VideoSource,
)
from collector.monitoring import add_source_breadcrumb, capture_collection_error
from collector.services import catalog_store
from collector.services.catalog_store import UPSERT_CREATED, UPSERT_SKIPPED, UPSERT_UPDATED
from collector.services.classifier import Classifier
from collector.services.deduplicator import CatalogEntry, QualityScorer
from collector.services.pipeline import ItemPipeline
from collector.services.response_parser import parse
from collector.services.source_registry import (
    get_source,
    list_active_sources,
    record_detected_format,
    record_probe,
)

logger = logging.getLogger(__name__)

# Canonical short-drama category
SHORTS_CATEGORY_IDS = [5]

TASK_TYPE_DEFAULTS = {
    TaskType.FULL: {"page_start": 1, "page_end": -1},
    TaskType.INCREMENTAL: {"page_start": 1, "page_end": 5, "hours": 24},
    TaskType.CATEGORY: {"page_start": 1, "page_end": 20},
    TaskType.SOURCE: {"page_start": 1, "page_end": -1},
    TaskType.SHORTS: {"page_start": 1, "page_end": -1, "category_ids": SHORTS_CATEGORY_IDS},
}

# Alternative spellings accepted from API payloads
CONFIG_ALIASES = {
    "sourceIds": "source_ids",
    "categoryIds": "category_ids",
    "pageStart": "page_start",
    "pageEnd": "page_end",
    "maxVideos": "max_videos",
    "includeLowPriority": "include_low_priority",
}

# A stream is abandoned after this many failed pages in a row
MAX_CONSECUTIVE_PAGE_ERRORS = 3

STOP_DONE = "done"
STOP_INTERRUPTED = "interrupted"
STOP_YIELD = "yield"
STOP_LIMIT = "limit"


class PageError(Exception):
    """A single page could not be fetched or parsed."""


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidTaskConfig(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidTaskConfig(f"{name} must be an integer")


def validate_config(task_type: str, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate and normalize a task configuration.

    Args:
        task_type: One of TaskType
        config: Raw configuration (snake_case or camelCase keys)

    Returns:
        Normalized config with type defaults applied

    Raises:
        InvalidTaskConfig: On malformed values or missing required keys
        UnknownSource: If a configured source does not exist
    """
    if task_type not in TaskType.values:
        raise InvalidTaskConfig(f"Unknown task type: {task_type}")
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise InvalidTaskConfig("config must be an object")

    raw = {CONFIG_ALIASES.get(key, key): value for key, value in config.items()}
    page_range = raw.pop("pageRange", None) or raw.pop("page_range", None)
    if isinstance(page_range, dict):
        raw.setdefault("page_start", page_range.get("start"))
        raw.setdefault("page_end", page_range.get("end"))
    elif isinstance(page_range, (list, tuple)) and len(page_range) == 2:
        raw.setdefault("page_start", page_range[0])
        raw.setdefault("page_end", page_range[1])

    normalized = dict(TASK_TYPE_DEFAULTS[task_type])
    normalized.update({key: value for key, value in raw.items() if value is not None})

    source_ids = normalized.get("source_ids") or []
    if not isinstance(source_ids, (list, tuple)):
        raise InvalidTaskConfig("source_ids must be a list")
    source_ids = [str(source_id) for source_id in source_ids]
    for source_id in source_ids:
        get_source(source_id)
    normalized["source_ids"] = source_ids

    category_ids = normalized.get("category_ids") or []
    if not isinstance(category_ids, (list, tuple)):
        raise InvalidTaskConfig("category_ids must be a list")
    normalized["category_ids"] = [_as_int(c, "category_ids") for c in category_ids]

    page_start = _as_int(normalized.get("page_start", 1), "page_start")
    page_end = _as_int(normalized.get("page_end", -1), "page_end")
    if page_start < 1:
        raise InvalidTaskConfig("page_start must be >= 1")
    if page_end != -1 and page_end < page_start:
        raise InvalidTaskConfig("page_end must be -1 or >= page_start")
    normalized["page_start"] = page_start
    normalized["page_end"] = page_end

    max_videos = _as_int(normalized.get("max_videos", 0), "max_videos")
    if max_videos < 0:
        raise InvalidTaskConfig("max_videos must be >= 0")
    normalized["max_videos"] = max_videos

    if "hours" in normalized:
        hours = _as_int(normalized["hours"], "hours")
        if hours < 1:
            raise InvalidTaskConfig("hours must be >= 1")
        normalized["hours"] = hours

    normalized["include_low_priority"] = bool(normalized.get("include_low_priority", False))

    if task_type == TaskType.CATEGORY and not normalized["category_ids"]:
        raise InvalidTaskConfig("category tasks require category_ids")
    if task_type == TaskType.SOURCE and len(source_ids) != 1:
        raise InvalidTaskConfig("source tasks require exactly one source id")

    return normalized


class Dispatcher:
    """Schedules execute(task_id) somewhere else."""

    def dispatch(self, task_id) -> None:
        raise NotImplementedError


class CeleryDispatcher(Dispatcher):
    def dispatch(self, task_id) -> None:
        from collector.tasks import run_collection_task

        run_collection_task.delay(str(task_id))


@dataclass
class Stream:
    key: str
    source: VideoSource
    category_id: Optional[str] = None


@dataclass
class PageResult:
    entries: List[CatalogEntry] = field(default_factory=list)
    item_count: int = 0
    page_count: Optional[int] = None
    error: str = ""


class _RunBudget:
    """Pages this execution may still process before yielding."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0
        self._lock = threading.Lock()

    def take(self) -> bool:
        if not self.limit:
            return True
        with self._lock:
            if self.used >= self.limit:
                return False
            self.used += 1
            return True


def write_log(task_id, action: str, message: str, level: str = LogLevel.INFO, **kwargs) -> None:
    """Append a CollectionLogEntry (and mirror it to the module logger)."""
    CollectionLogEntry.objects.create(
        task_id=task_id,
        level=level,
        action=action,
        message=message[:2000],
        vod_id=str(kwargs.get("vod_id", ""))[:64],
        vod_name=str(kwargs.get("vod_name", ""))[:255],
        details=kwargs.get("details") or {},
    )
    log_level = logging.WARNING if level in (LogLevel.WARNING, LogLevel.ERROR) else logging.INFO
    logger.log(log_level, f"[task {task_id}] {action}: {message}")


class TaskEngine:
    """
    Creates, controls and executes collection tasks.

    The persisted task row is the only source of truth: control calls change
    the status, and the execution loop re-reads it at every page boundary.
    """

    def __init__(
        self,
        dispatcher: Optional[Dispatcher] = None,
        client: Optional[SourceClient] = None,
        classifier: Optional[Classifier] = None,
        scorer: Optional[QualityScorer] = None,
        source_workers: Optional[int] = None,
        pages_per_run: Optional[int] = None,
        page_delay: Optional[float] = None,
    ):
        self.dispatcher = dispatcher or CeleryDispatcher()
        self.client = client or SourceClient()
        self.pipeline = ItemPipeline(classifier or Classifier())
        self.scorer = scorer or QualityScorer()
        self.source_workers = source_workers or getattr(settings, "COLLECTOR_SOURCE_WORKERS", 1)
        self.pages_per_run = (
            pages_per_run if pages_per_run is not None
            else getattr(settings, "COLLECTOR_PAGES_PER_RUN", 0)
        )
        self.page_delay = (
            page_delay if page_delay is not None
            else getattr(settings, "COLLECTOR_PAGE_DELAY", 0.5)
        )

    # Task lifecycle

    def get_task(self, task_id) -> CollectionTask:
        try:
            return CollectionTask.objects.get(pk=task_id)
        except (CollectionTask.DoesNotExist, ValidationError, ValueError):
            raise UnknownTask(task_id)

    def create_task(self, task_type: str, config=None, created_by: str = "") -> CollectionTask:
        """
        Validate the configuration and create a pending task.

        Raises:
            InvalidTaskConfig, UnknownSource: Before anything is persisted
        """
        normalized = validate_config(task_type, config)
        task = CollectionTask.objects.create(
            task_type=task_type,
            config=normalized,
            checkpoint={"sources": {}},
            created_by=created_by or "",
        )
        write_log(task.id, "created", f"{task.get_task_type_display()} task created",
                  details={"config": normalized})
        return task

    def _transition(self, task_id, target: str, **fields) -> CollectionTask:
        now = timezone.now()
        with transaction.atomic():
            try:
                task = CollectionTask.objects.select_for_update().get(pk=task_id)
            except CollectionTask.DoesNotExist:
                raise UnknownTask(task_id)

            if not task.can_transition_to(target):
                raise InvalidTransition(task.id, task.status, target)

            previous = task.status
            task.status = target
            for name, value in fields.items():
                setattr(task, name, value)
            if target == TaskStatus.RUNNING and task.started_at is None:
                task.started_at = now
            if target == TaskStatus.PAUSED:
                task.paused_at = now
            if target in TERMINAL_TASK_STATUSES:
                task.completed_at = now
            task.updated_at = now
            task.save()

        write_log(task.id, target, f"Status {previous} -> {target}")
        return task

    def start_task(self, task_id) -> CollectionTask:
        task = self._transition(task_id, TaskStatus.RUNNING)
        self.dispatcher.dispatch(task.id)
        return task

    def pause_task(self, task_id) -> CollectionTask:
        return self._transition(task_id, TaskStatus.PAUSED)

    def resume_task(self, task_id) -> CollectionTask:
        """Continue a paused task, or retry a failed one, from its checkpoint."""
        task = self._transition(task_id, TaskStatus.RUNNING, paused_at=None, last_error="")
        self.dispatcher.dispatch(task.id)
        return task

    def cancel_task(self, task_id) -> CollectionTask:
        return self._transition(task_id, TaskStatus.CANCELLED)

    # Execution

    def execute(self, task_id) -> Dict[str, Any]:
        """
        Run a task from its checkpoint until it completes, is interrupted by a
        control call, or yields its worker.

        Returns:
            Dict with task_id, status, stop reason and progress
        """
        task = self.get_task(task_id)
        if task.status != TaskStatus.RUNNING:
            logger.info(f"Task {task.id} is {task.status}, nothing to execute")
            return {"task_id": str(task.id), "status": task.status, "stopped": None,
                    "progress": task.progress}

        try:
            streams = self._plan(task)
            budget = _RunBudget(self.pages_per_run)
            reasons = self._run_streams(task, streams, budget)
        except Exception as e:
            self._fail(task_id, e)
            task.refresh_from_db()
            return {"task_id": str(task.id), "status": task.status, "stopped": "failed",
                    "progress": task.progress}

        if STOP_INTERRUPTED in reasons:
            stopped = STOP_INTERRUPTED
        elif STOP_YIELD in reasons:
            stopped = STOP_YIELD
            write_log(task.id, "yield", "Page budget used, continuing in a new run")
            self.dispatcher.dispatch(task.id)
        else:
            stopped = STOP_LIMIT if STOP_LIMIT in reasons else STOP_DONE
            self._complete(task.id)

        task.refresh_from_db()
        return {"task_id": str(task.id), "status": task.status, "stopped": stopped,
                "progress": task.progress}

    def _sources_for(self, task: CollectionTask) -> List[VideoSource]:
        source_ids = task.config.get("source_ids") or []
        if source_ids:
            # Explicitly requested sources bypass health filtering
            return [get_source(source_id) for source_id in source_ids]
        return list_active_sources(
            include_low_priority=task.config.get("include_low_priority", False)
        )

    def _plan(self, task: CollectionTask) -> List[Stream]:
        """Expand the task into streams, in crawl order."""
        category_ids = task.config.get("category_ids") or []
        streams = []
        for source in self._sources_for(task):
            if not category_ids:
                streams.append(Stream(key=str(source.pk), source=source))
                continue

            raw_ids = list(
                CategoryMapping.objects.filter(
                    source=source, target_category_id__in=category_ids
                ).order_by("source_category_id").values_list("source_category_id", flat=True)
            )
            if not raw_ids:
                # No learned mapping: page the whole source, filter after classification
                streams.append(Stream(key=str(source.pk), source=source))
                continue
            for raw_id in raw_ids:
                streams.append(Stream(key=f"{source.pk}:{raw_id}", source=source, category_id=raw_id))
        return streams

    def _run_streams(self, task: CollectionTask, streams: List[Stream], budget: _RunBudget) -> List[str]:
        if self.source_workers <= 1 or len(streams) <= 1:
            reasons = []
            for stream in streams:
                reason = self._run_stream(task, stream, budget)
                reasons.append(reason)
                if reason != STOP_DONE:
                    break
            return reasons

        def run(stream):
            try:
                return self._run_stream(task, stream, budget)
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=self.source_workers) as executor:
            return list(executor.map(run, streams))

    def _cursor(self, task_id, stream: Stream) -> Dict[str, Any]:
        checkpoint = CollectionTask.objects.values_list("checkpoint", flat=True).get(pk=task_id)
        return (checkpoint or {}).get("sources", {}).get(stream.key) or {}

    def _run_stream(self, task: CollectionTask, stream: Stream, budget: _RunBudget) -> str:
        config = task.config
        page_start = config.get("page_start", 1)
        page_end = config.get("page_end", -1)
        max_videos = config.get("max_videos", 0)

        cursor = self._cursor(task.id, stream)
        if cursor.get("done"):
            return STOP_DONE

        page = max(cursor.get("page", page_start - 1) + 1, page_start)
        total_pages = cursor.get("total_pages")

        if "page" not in cursor:
            write_log(task.id, "source_start", f"Collecting {stream.source.name}",
                      details={"stream": stream.key, "page_start": page})

        while True:
            if page_end != -1 and page > page_end:
                break
            if total_pages and page > total_pages:
                break

            status, processed = CollectionTask.objects.values_list(
                "status", "processed_count"
            ).get(pk=task.id)
            if status != TaskStatus.RUNNING:
                logger.info(f"Task {task.id} is {status}, stopping at page {page}")
                return STOP_INTERRUPTED
            if max_videos and processed >= max_videos:
                write_log(task.id, "max_reached", f"Reached max_videos limit {max_videos}")
                return STOP_LIMIT
            if not budget.take():
                return STOP_YIELD

            result = self._process_page(task, stream, page)
            state = self._commit_page(task, stream, page, result)
            if state is None:
                # Page was already committed by an earlier run
                page += 1
                continue

            if state.get("done"):
                return STOP_DONE
            total_pages = state.get("total_pages")
            page += 1

            if self.page_delay:
                time.sleep(self.page_delay)

        self._finish_stream(task, stream)
        return STOP_DONE

    def _process_page(self, task: CollectionTask, stream: Stream, page: int) -> PageResult:
        """Fetch, parse, classify and normalize one page. No catalog writes."""
        source = stream.source
        url = build_url(
            source.endpoint_url,
            action=ACTION_DETAIL,
            page=page,
            category_id=stream.category_id,
            hours=task.config.get("hours"),
        )

        try:
            response = self.client.fetch(url)
            if not response.success:
                record_probe(source.pk, success=False, latency_ms=response.elapsed_ms,
                             status="timeout" if response.timed_out else "error",
                             error=response.error or "")
                raise PageError(response.error or "Request failed")

            parsed = parse(response.content, source.response_format)
            if not parsed.success:
                raise PageError(f"{parsed.error.code}: {parsed.error.message}")
            record_detected_format(source, parsed.detected_format)

            category_ids = set(task.config.get("category_ids") or [])
            entries = []
            for item in parsed.items:
                entry = self.pipeline.process(source, item)
                if category_ids and entry.category_id not in category_ids:
                    continue
                entries.append(entry)

            return PageResult(
                entries=entries,
                item_count=len(parsed.items),
                page_count=parsed.page_count,
            )

        except DatabaseError:
            raise
        except Exception as e:
            add_source_breadcrumb(
                source_name=source.name,
                url=url,
                message="Collection page failed",
                level="warning",
                extra_data={"task_id": str(task.id), "page": page},
            )
            return PageResult(error=str(e) or type(e).__name__)

    def _stream_total(self, task: CollectionTask, page_count: Optional[int]) -> Optional[int]:
        if not page_count:
            return None
        page_end = task.config.get("page_end", -1)
        return page_count if page_end == -1 else min(page_count, page_end)

    def _commit_page(
        self,
        task: CollectionTask,
        stream: Stream,
        page: int,
        result: PageResult,
    ) -> Optional[Dict[str, Any]]:
        """
        Upsert a page and advance the stream cursor atomically.

        Returns:
            The new cursor, or None when the page was committed before
        """
        page_start = task.config.get("page_start", 1)
        counts = {UPSERT_CREATED: 0, UPSERT_UPDATED: 0, UPSERT_SKIPPED: 0}

        with transaction.atomic():
            locked = CollectionTask.objects.select_for_update().get(pk=task.id)
            checkpoint = locked.checkpoint or {}
            checkpoint.setdefault("sources", {})
            cursor = dict(checkpoint["sources"].get(stream.key) or {
                "source_id": str(stream.source.pk),
                "category_id": stream.category_id,
                "page": page_start - 1,
                "done": False,
                "total_pages": None,
                "errors": 0,
            })
            if page <= cursor["page"]:
                return None

            failed = []
            for entry in result.entries:
                try:
                    with transaction.atomic():
                        outcome, _ = catalog_store.upsert_entry(
                            entry, stream.source.weight, self.scorer
                        )
                except (DataError, IntegrityError) as e:
                    failed.append((entry, e))
                    continue
                counts[outcome] += 1
            stored = len(result.entries) - len(failed)

            cursor["page"] = page
            if result.error:
                cursor["errors"] = cursor.get("errors", 0) + 1
                if cursor["errors"] >= MAX_CONSECUTIVE_PAGE_ERRORS:
                    cursor["done"] = True
                    cursor["abandoned"] = True
            else:
                cursor["errors"] = 0
                total = self._stream_total(task, result.page_count)
                if total:
                    cursor["total_pages"] = total
                if result.item_count == 0 or (total and page >= total):
                    cursor["done"] = True

            checkpoint["sources"][stream.key] = cursor
            checkpoint["currentSourceId"] = str(stream.source.pk)
            checkpoint["currentPage"] = page

            locked.checkpoint = checkpoint
            locked.total_pages = sum(
                max((state.get("total_pages") or state["page"]) - page_start + 1, 0)
                for state in checkpoint["sources"].values()
            )
            locked.processed_count = F("processed_count") + stored
            locked.new_count = F("new_count") + counts[UPSERT_CREATED]
            locked.update_count = F("update_count") + counts[UPSERT_UPDATED]
            locked.skip_count = F("skip_count") + counts[UPSERT_SKIPPED]
            page_errors = len(failed) + (1 if result.error else 0)
            if page_errors:
                locked.error_count = F("error_count") + page_errors
            locked.updated_at = timezone.now()
            locked.save(update_fields=[
                "checkpoint", "total_pages", "processed_count", "new_count",
                "update_count", "skip_count", "error_count", "updated_at",
            ])

            if stored:
                VideoSource.objects.filter(pk=stream.source.pk).update(
                    total_items_collected=F("total_items_collected") + stored,
                    last_collected_at=timezone.now(),
                )

            for entry, error in failed:
                write_log(
                    task.id,
                    "item_error",
                    f"{stream.source.name} page {page}: could not store {entry.title}: {error}",
                    level=LogLevel.ERROR,
                    vod_id=entry.source_vod_ids.get(stream.source.name, ""),
                    vod_name=entry.title,
                    details={"stream": stream.key, "page": page, "error": type(error).__name__},
                )

            if result.error:
                write_log(
                    task.id,
                    "page_error",
                    f"{stream.source.name} page {page}: {result.error}",
                    level=LogLevel.ERROR,
                    details={"stream": stream.key, "page": page},
                )
                if cursor.get("abandoned"):
                    write_log(
                        task.id,
                        "source_abandoned",
                        f"{stream.source.name} failed {MAX_CONSECUTIVE_PAGE_ERRORS} pages in a row",
                        level=LogLevel.WARNING,
                        details={"stream": stream.key},
                    )

        if cursor["done"] and not cursor.get("abandoned"):
            write_log(task.id, "source_done", f"Finished {stream.source.name} at page {page}",
                      details={"stream": stream.key})
        return cursor

    def _finish_stream(self, task: CollectionTask, stream: Stream) -> None:
        """Mark a stream done when it ran out of configured pages."""
        with transaction.atomic():
            locked = CollectionTask.objects.select_for_update().get(pk=task.id)
            checkpoint = locked.checkpoint or {}
            cursor = checkpoint.setdefault("sources", {}).get(stream.key)
            if cursor is None or cursor.get("done"):
                return
            cursor["done"] = True
            locked.checkpoint = checkpoint
            locked.updated_at = timezone.now()
            locked.save(update_fields=["checkpoint", "updated_at"])
        write_log(task.id, "source_done", f"Finished {stream.source.name}",
                  details={"stream": stream.key})

    def _complete(self, task_id) -> None:
        with transaction.atomic():
            task = CollectionTask.objects.select_for_update().get(pk=task_id)
            if task.status != TaskStatus.RUNNING:
                return
            task.status = TaskStatus.COMPLETED
            task.completed_at = timezone.now()
            task.updated_at = task.completed_at
            task.save(update_fields=["status", "completed_at", "updated_at"])

        write_log(
            task.id,
            "completed",
            f"Completed: {task.processed_count} processed, {task.new_count} new, "
            f"{task.update_count} updated, {task.skip_count} skipped, "
            f"{task.error_count} errors",
            details=task.progress,
        )

    def _fail(self, task_id, error: Exception) -> None:
        logger.exception(f"Task {task_id} failed: {error}")
        task = None
        try:
            with transaction.atomic():
                task = CollectionTask.objects.select_for_update().get(pk=task_id)
                if task.status == TaskStatus.RUNNING:
                    task.status = TaskStatus.FAILED
                    task.completed_at = timezone.now()
                task.last_error = f"{type(error).__name__}: {error}"[:2000]
                task.error_details = {
                    "type": type(error).__name__,
                    "message": str(error),
                    "checkpoint": task.checkpoint,
                    "failed_at": timezone.now().isoformat(),
                }
                task.updated_at = timezone.now()
                task.save()
            write_log(task_id, "failed", task.last_error, level=LogLevel.ERROR)
        except DatabaseError as db_error:
            logger.error(f"Could not record failure of task {task_id}: {db_error}")

        capture_collection_error(error, task=task)

    # Maintenance

    def recover_stalled_tasks(self, stale_minutes: int = 30) -> List[str]:
        """
        Re-dispatch running tasks whose worker stopped checkpointing.

        Returns:
            Ids of re-dispatched tasks
        """
        cutoff = timezone.now() - timedelta(minutes=stale_minutes)
        stalled = list(
            CollectionTask.objects.filter(status=TaskStatus.RUNNING, updated_at__lt=cutoff)
            .values_list("id", flat=True)
        )
        for task_id in stalled:
            write_log(task_id, "recovered", "No checkpoint progress, re-dispatching",
                      level=LogLevel.WARNING)
            CollectionTask.objects.filter(pk=task_id).update(updated_at=timezone.now())
            self.dispatcher.dispatch(task_id)
        return [str(task_id) for task_id in stalled]

    def cleanup_old_tasks(self, days: Optional[int] = None, log_days: Optional[int] = None) -> Dict[str, int]:
        """
        Delete terminal tasks older than the retention window and prune logs.

        Logs of deleted tasks cascade. Running, paused and pending tasks are
        never deleted.

        Returns:
            Dict with tasks and logs deleted
        """
        days = days if days is not None else getattr(settings, "COLLECTOR_TASK_RETENTION_DAYS", 30)
        log_days = log_days if log_days is not None else getattr(
            settings, "COLLECTOR_LOG_RETENTION_DAYS", 7
        )
        now = timezone.now()

        old_tasks = CollectionTask.objects.filter(
            status__in=TERMINAL_TASK_STATUSES,
            created_at__lt=now - timedelta(days=days),
        )
        task_count = old_tasks.count()
        old_tasks.delete()

        _, deleted = CollectionLogEntry.objects.filter(
            created_at__lt=now - timedelta(days=log_days)
        ).delete()
        log_count = deleted.get(CollectionLogEntry._meta.label, 0)

        logger.info(f"Cleanup removed {task_count} tasks and {log_count} log entries")
        return {"tasks": task_count, "logs": log_count}
