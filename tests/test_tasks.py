"""
Tests for the Celery tasks.

Celery runs eagerly in tests (CELERY_TASK_ALWAYS_EAGER), so dispatching a
collection task executes it in-process.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
import responses
from django.utils import timezone

from collector.models import CategoryMapping, CollectionTask, SourceHealth, TaskStatus, TaskType
from collector.tasks import (
    cleanup_collection_history,
    probe_sources,
    recover_stalled_tasks,
    run_collection_task,
    schedule_incremental_collection,
    sync_source_categories,
    validate_play_urls,
)


pytestmark = pytest.mark.django_db


class TestRunCollectionTask:
    @responses.activate
    def test_executes_task(self, source_a, listing_body, vod):
        responses.add(responses.GET, source_a.endpoint_url, body=listing_body([vod("某剧")]))
        task = CollectionTask.objects.create(
            task_type=TaskType.SOURCE,
            status=TaskStatus.RUNNING,
            config={"source_ids": [str(source_a.id)], "page_start": 1, "page_end": -1},
        )

        result = run_collection_task.delay(str(task.id)).get()

        assert result["status"] == TaskStatus.COMPLETED
        assert result["progress"]["newCount"] == 1

    def test_unknown_task(self):
        result = run_collection_task.delay("00000000-0000-0000-0000-000000000000").get()
        assert result["status"] == "failed"


class TestScheduleIncrementalCollection:
    def test_dispatches_and_runs(self):
        # No sources configured: the eager run completes immediately
        result = schedule_incremental_collection.delay(hours=6, max_pages=2).get()

        assert result["status"] == "dispatched"
        task = CollectionTask.objects.get(pk=result["task_id"])
        assert task.task_type == TaskType.INCREMENTAL
        assert task.config["hours"] == 6
        assert task.config["page_end"] == 2
        assert task.created_by == "scheduler"
        assert task.status == TaskStatus.COMPLETED

    def test_skips_when_in_flight(self):
        running = CollectionTask.objects.create(
            task_type=TaskType.INCREMENTAL, status=TaskStatus.PAUSED
        )

        result = schedule_incremental_collection()

        assert result == {"status": "skipped", "task_id": str(running.id)}
        assert CollectionTask.objects.count() == 1


class TestSourceTasks:
    @responses.activate
    def test_probe_sources(self, source_a, listing_body, vod):
        responses.add(responses.GET, source_a.endpoint_url, body=listing_body([vod("某剧")]))

        summary = probe_sources()

        assert summary["total"] == 1
        assert SourceHealth.objects.get(source=source_a).status == "healthy"

    @responses.activate
    def test_sync_source_categories(self, source_a, listing_body, vod):
        responses.add(
            responses.GET,
            source_a.endpoint_url,
            body=listing_body([vod("某剧")], categories=[{"type_id": 13, "type_name": "国产剧"}]),
        )

        result = sync_source_categories.delay(str(source_a.id)).get()

        assert result["status"] == "completed"
        assert result["created"] == 1
        assert CategoryMapping.objects.filter(source=source_a, target_category_id=2).exists()

    @responses.activate
    def test_sync_source_categories_fetch_failure(self, source_a):
        responses.add(responses.GET, source_a.endpoint_url, status=503)

        result = sync_source_categories(str(source_a.id))

        assert result["status"] == "failed"

    def test_sync_unknown_source(self):
        result = sync_source_categories("not-a-uuid")
        assert result["status"] == "failed"


class TestMaintenanceTasks:
    def test_recover_stalled_tasks(self):
        task = CollectionTask.objects.create(
            task_type=TaskType.FULL,
            status=TaskStatus.RUNNING,
            updated_at=timezone.now() - timedelta(hours=1),
        )

        with patch("collector.services.task_engine.CeleryDispatcher.dispatch") as dispatch:
            result = recover_stalled_tasks(stale_minutes=30)

        assert result == {"recovered": [str(task.id)]}
        dispatch.assert_called_once_with(task.id)

    def test_cleanup_collection_history(self):
        old = CollectionTask.objects.create(task_type=TaskType.FULL, status=TaskStatus.COMPLETED)
        CollectionTask.objects.filter(pk=old.id).update(created_at=timezone.now() - timedelta(days=90))

        result = cleanup_collection_history()

        assert result["tasks"] == 1
        assert not CollectionTask.objects.exists()

    def test_validate_play_urls(self):
        assert validate_play_urls() == {"checked": 0, "groups_removed": 0, "invalidated": 0}
