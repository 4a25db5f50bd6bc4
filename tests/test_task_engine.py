"""
Tests for the collection task engine.

Covers:
- Config validation and type defaults
- The status state machine and dispatching
- Paged execution with checkpoints, redo, yield and control interrupts
- Per-page and per-item errors, max_videos and category-scoped streams
- Maintenance (stalled task recovery, retention cleanup)
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
import responses
from django.db import DataError
from django.utils import timezone

from collector.exceptions import InvalidTaskConfig, InvalidTransition, UnknownSource, UnknownTask
from collector.models import (
    CatalogItem,
    CategoryMapping,
    CollectionLogEntry,
    CollectionTask,
    SourceHealth,
    TaskStatus,
    TaskType,
)
from collector.services import catalog_store
from collector.services.deduplicator import CatalogEntry
from collector.services.task_engine import PageResult, Stream, TaskEngine, validate_config


pytestmark = pytest.mark.django_db


@pytest.fixture
def engine(recording_dispatcher, source_client, classifier):
    return TaskEngine(
        dispatcher=recording_dispatcher,
        client=source_client,
        classifier=classifier,
        source_workers=1,
        pages_per_run=0,
        page_delay=0,
    )


@pytest.fixture
def serve_pages(listing_body, vod, request_params):
    """
    Serve a paged listing for a source.

    Usage:
        serve_pages(source_a, pages=3, per_page=2, fail_pages={2}, on_page=callback)
    """
    def register(source, pages=3, per_page=2, fail_pages=(), on_page=None):
        def callback(request):
            page = int(request_params(request).get("pg", 1))
            if on_page:
                on_page(page)
            if page in fail_pages:
                return (500, {}, "")
            items = [
                vod(f"测试剧{page}之{n}", vod_id=page * 100 + n, host=f"{source.name}.cdn.example")
                for n in range(1, per_page + 1)
            ] if page <= pages else []
            return (200, {}, listing_body(items, page=page, pagecount=pages))

        responses.add_callback(responses.GET, source.endpoint_url, callback=callback)

    return register


def page_numbers(request_params):
    return [int(request_params(call.request).get("pg", 0)) for call in responses.calls]


class TestValidateConfig:
    def test_incremental_defaults(self):
        config = validate_config(TaskType.INCREMENTAL, None)

        assert config["page_start"] == 1
        assert config["page_end"] == 5
        assert config["hours"] == 24
        assert config["max_videos"] == 0
        assert config["source_ids"] == []

    def test_camel_case_aliases(self):
        config = validate_config(TaskType.FULL, {"pageStart": 2, "pageEnd": 4, "maxVideos": 10})
        assert (config["page_start"], config["page_end"], config["max_videos"]) == (2, 4, 10)

    def test_page_range(self):
        config = validate_config(TaskType.FULL, {"pageRange": {"start": 3, "end": 9}})
        assert (config["page_start"], config["page_end"]) == (3, 9)

    def test_shorts_default_category(self):
        assert validate_config(TaskType.SHORTS, {})["category_ids"] == [5]

    def test_source_ids_are_checked(self, source_a):
        config = validate_config(TaskType.SOURCE, {"source_ids": [source_a.id]})
        assert config["source_ids"] == [str(source_a.id)]

        with pytest.raises(UnknownSource):
            validate_config(TaskType.FULL, {"source_ids": ["00000000-0000-0000-0000-000000000000"]})

    @pytest.mark.parametrize("task_type,config", [
        ("bogus", {}),
        (TaskType.FULL, []),
        (TaskType.FULL, {"page_start": 0}),
        (TaskType.FULL, {"page_start": 5, "page_end": 2}),
        (TaskType.FULL, {"page_end": "many"}),
        (TaskType.FULL, {"max_videos": True}),
        (TaskType.FULL, {"max_videos": -1}),
        (TaskType.INCREMENTAL, {"hours": 0}),
        (TaskType.FULL, {"category_ids": "2"}),
        (TaskType.CATEGORY, {}),
        (TaskType.SOURCE, {}),
    ])
    def test_invalid(self, task_type, config):
        with pytest.raises(InvalidTaskConfig):
            validate_config(task_type, config)


class TestLifecycle:
    def test_create_is_pending(self, engine):
        task = engine.create_task(TaskType.FULL, {"page_end": 2}, created_by="operator")

        assert task.status == TaskStatus.PENDING
        assert task.created_by == "operator"
        assert task.config["page_end"] == 2
        assert task.logs.filter(action="created").exists()

    def test_invalid_config_persists_nothing(self, engine):
        with pytest.raises(InvalidTaskConfig):
            engine.create_task(TaskType.CATEGORY, {})
        assert not CollectionTask.objects.exists()

    def test_full_cycle(self, engine, recording_dispatcher):
        task = engine.create_task(TaskType.FULL)

        task = engine.start_task(task.id)
        assert task.status == TaskStatus.RUNNING
        assert task.started_at is not None
        assert recording_dispatcher.dispatched == [str(task.id)]

        task = engine.pause_task(task.id)
        assert task.status == TaskStatus.PAUSED
        assert task.paused_at is not None

        task = engine.resume_task(task.id)
        assert task.status == TaskStatus.RUNNING
        assert task.paused_at is None
        assert len(recording_dispatcher.dispatched) == 2

        task = engine.cancel_task(task.id)
        assert task.status == TaskStatus.CANCELLED
        assert task.completed_at is not None

    def test_terminal_tasks_cannot_resume(self, engine):
        cancelled = engine.create_task(TaskType.FULL)
        engine.cancel_task(cancelled.id)
        completed = engine.create_task(TaskType.FULL)
        CollectionTask.objects.filter(pk=completed.id).update(status=TaskStatus.COMPLETED)

        for task in (cancelled, completed):
            with pytest.raises(InvalidTransition):
                engine.resume_task(task.id)

    def test_pending_cannot_pause(self, engine):
        task = engine.create_task(TaskType.FULL)
        with pytest.raises(InvalidTransition) as exc_info:
            engine.pause_task(task.id)
        assert exc_info.value.current == TaskStatus.PENDING

    def test_failed_task_can_retry(self, engine, recording_dispatcher):
        task = engine.create_task(TaskType.FULL)
        CollectionTask.objects.filter(pk=task.id).update(status=TaskStatus.FAILED, last_error="boom")

        task = engine.resume_task(task.id)

        assert task.status == TaskStatus.RUNNING
        assert task.last_error == ""
        assert recording_dispatcher.dispatched == [str(task.id)]

    @pytest.mark.parametrize("task_id", ["00000000-0000-0000-0000-000000000000", "not-a-uuid"])
    def test_unknown_task(self, engine, task_id):
        with pytest.raises(UnknownTask):
            engine.get_task(task_id)


class TestExecute:
    @responses.activate
    def test_full_run(self, engine, source_a, serve_pages, request_params):
        serve_pages(source_a, pages=3, per_page=2)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.COMPLETED
        assert result["stopped"] == "done"
        progress = result["progress"]
        assert progress["processedCount"] == 6
        assert progress["newCount"] == 6
        assert progress["currentPage"] == 3
        assert progress["totalPages"] == 3
        assert progress["currentSourceId"] == str(source_a.id)
        assert page_numbers(request_params) == [1, 2, 3]
        assert all("ac=detail" in call.request.url for call in responses.calls)
        assert CatalogItem.objects.count() == 6

        source_a.refresh_from_db()
        assert source_a.total_items_collected == 6
        assert source_a.last_collected_at is not None
        assert CollectionLogEntry.objects.filter(task_id=task.id, action="completed").exists()

    @responses.activate
    def test_redo_skips_existing_items(self, engine, source_a, serve_pages):
        serve_pages(source_a, pages=2, per_page=2)
        for _ in range(2):
            task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
            engine.start_task(task.id)
            result = engine.execute(task.id)

        assert result["progress"]["newCount"] == 0
        assert result["progress"]["skipCount"] == 4
        assert CatalogItem.objects.count() == 4

    @responses.activate
    def test_unstorable_item_is_logged_and_skipped(self, engine, source_a, serve_pages):
        serve_pages(source_a, pages=3, per_page=2)
        real_upsert = catalog_store.upsert_entry
        calls = []

        def reject_first(entry, *args, **kwargs):
            calls.append(entry.title)
            if len(calls) == 1:
                raise DataError("value too long for type character varying(255)")
            return real_upsert(entry, *args, **kwargs)

        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)

        with patch("collector.services.catalog_store.upsert_entry", side_effect=reject_first):
            result = engine.execute(task.id)

        assert result["status"] == TaskStatus.COMPLETED
        assert result["progress"]["processedCount"] == 5
        assert result["progress"]["errorCount"] == 1
        assert CatalogItem.objects.count() == 5
        log = CollectionLogEntry.objects.get(task_id=task.id, action="item_error")
        assert log.level == "error"
        assert log.vod_id == "101"
        assert log.vod_name == "测试剧1之1"
        source_a.refresh_from_db()
        assert source_a.total_items_collected == 5

    def test_committing_a_page_twice_changes_nothing(self, engine, source_a):
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)
        stream = Stream(key=str(source_a.pk), source=source_a)
        page = PageResult(
            entries=[
                CatalogEntry(
                    title=f"重做剧{n}",
                    year="2024",
                    source_name=source_a.name,
                    source_vod_ids={source_a.name: str(n)},
                )
                for n in range(1, 3)
            ],
            item_count=2,
            page_count=3,
        )

        cursor = engine._commit_page(task, stream, 1, page)
        first = CollectionTask.objects.get(pk=task.id)

        assert cursor["page"] == 1
        assert engine._commit_page(task, stream, 1, page) is None

        again = CollectionTask.objects.get(pk=task.id)
        assert again.checkpoint == first.checkpoint
        assert (again.processed_count, again.new_count, again.skip_count) == (2, 2, 0)
        assert CatalogItem.objects.count() == 2

    def test_not_running_is_a_no_op(self, engine):
        task = engine.create_task(TaskType.FULL)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.PENDING
        assert result["stopped"] is None

    @responses.activate
    def test_yield_and_continue_from_checkpoint(
        self, source_a, serve_pages, recording_dispatcher, source_client, classifier, request_params
    ):
        engine = TaskEngine(
            dispatcher=recording_dispatcher,
            client=source_client,
            classifier=classifier,
            pages_per_run=1,
            page_delay=0,
        )
        serve_pages(source_a, pages=3, per_page=1)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)

        first = engine.execute(task.id)
        assert first["stopped"] == "yield"
        assert first["status"] == TaskStatus.RUNNING
        assert first["progress"]["currentPage"] == 1

        engine.execute(task.id)
        last = engine.execute(task.id)

        assert last["status"] == TaskStatus.COMPLETED
        assert last["progress"]["processedCount"] == 3
        assert page_numbers(request_params) == [1, 2, 3]
        assert len(recording_dispatcher.dispatched) == 3

    @responses.activate
    def test_pause_interrupts_and_resume_continues(self, engine, source_a, serve_pages, request_params):
        holder = {}

        def pause_on_second_page(page):
            if page == 2:
                CollectionTask.objects.filter(pk=holder["id"]).update(status=TaskStatus.PAUSED)

        serve_pages(source_a, pages=3, per_page=2, on_page=pause_on_second_page)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        holder["id"] = task.id
        engine.start_task(task.id)

        interrupted = engine.execute(task.id)

        assert interrupted["stopped"] == "interrupted"
        assert interrupted["status"] == TaskStatus.PAUSED
        assert interrupted["progress"]["currentPage"] == 2
        assert interrupted["progress"]["processedCount"] == 4

        holder["id"] = None
        engine.resume_task(task.id)
        finished = engine.execute(task.id)

        assert finished["status"] == TaskStatus.COMPLETED
        assert finished["progress"]["processedCount"] == 6
        assert page_numbers(request_params) == [1, 2, 3]

    @responses.activate
    def test_cancel_interrupts(self, engine, source_a, serve_pages):
        holder = {}

        def cancel_on_first_page(page):
            CollectionTask.objects.filter(pk=holder["id"]).update(status=TaskStatus.CANCELLED)

        serve_pages(source_a, pages=3, on_page=cancel_on_first_page)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        holder["id"] = task.id
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.CANCELLED
        assert result["stopped"] == "interrupted"
        assert len(responses.calls) == 1

    @responses.activate
    def test_page_error_is_logged_and_skipped(self, engine, source_a, serve_pages, request_params):
        serve_pages(source_a, pages=3, per_page=2, fail_pages={2})
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.COMPLETED
        assert result["progress"]["errorCount"] == 1
        assert result["progress"]["processedCount"] == 4
        assert page_numbers(request_params) == [1, 2, 3]
        assert CollectionLogEntry.objects.filter(task_id=task.id, action="page_error").count() == 1

    @responses.activate
    def test_stream_abandoned_after_consecutive_errors(self, engine, source_a, serve_pages):
        serve_pages(source_a, pages=10, fail_pages=set(range(1, 11)))
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id]})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.COMPLETED
        assert result["progress"]["errorCount"] == 3
        assert len(responses.calls) == 3
        assert CollectionLogEntry.objects.filter(task_id=task.id, action="source_abandoned").exists()
        assert SourceHealth.objects.get(source=source_a).consecutive_failures == 3

    @responses.activate
    def test_max_videos_stops_at_page_boundary(self, engine, source_a, serve_pages):
        serve_pages(source_a, pages=5, per_page=2)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id], "max_videos": 3})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["stopped"] == "limit"
        assert result["status"] == TaskStatus.COMPLETED
        assert result["progress"]["processedCount"] == 4
        assert len(responses.calls) == 2

    @responses.activate
    def test_page_end_bounds_the_run(self, engine, source_a, serve_pages, request_params):
        serve_pages(source_a, pages=10, per_page=1)
        task = engine.create_task(TaskType.FULL, {"source_ids": [source_a.id], "page_start": 2, "page_end": 3})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.COMPLETED
        assert page_numbers(request_params) == [2, 3]
        assert result["progress"]["totalPages"] == 2

    @responses.activate
    def test_incremental_sends_hours(self, engine, source_a, serve_pages):
        serve_pages(source_a, pages=1)
        task = engine.create_task(TaskType.INCREMENTAL, {"source_ids": [source_a.id], "hours": 6})
        engine.start_task(task.id)

        engine.execute(task.id)

        assert "h=6" in responses.calls[0].request.url

    @responses.activate
    def test_category_task_uses_mapped_streams(self, engine, source_a, serve_pages, request_params):
        CategoryMapping.objects.create(source=source_a, source_category_id="13", target_category_id=2)
        serve_pages(source_a, pages=1, per_page=2)
        task = engine.create_task(TaskType.CATEGORY, {"source_ids": [source_a.id], "category_ids": [2]})
        engine.start_task(task.id)

        result = engine.execute(task.id)

        assert request_params(responses.calls[0].request)["t"] == "13"
        task.refresh_from_db()
        assert f"{source_a.id}:13" in task.checkpoint["sources"]
        assert result["progress"]["processedCount"] == 2

    @responses.activate
    def test_all_active_sources_when_unscoped(self, engine, source_a, source_b, serve_pages):
        serve_pages(source_a, pages=1, per_page=1)
        serve_pages(source_b, pages=1, per_page=1)
        task = engine.create_task(TaskType.FULL)
        engine.start_task(task.id)

        engine.execute(task.id)

        task.refresh_from_db()
        assert set(task.checkpoint["sources"]) == {str(source_a.id), str(source_b.id)}
        assert all(state["done"] for state in task.checkpoint["sources"].values())

    def test_missing_source_fails_task(self, engine, source_a):
        task = engine.create_task(TaskType.SOURCE, {"source_ids": [source_a.id]})
        engine.start_task(task.id)
        source_a.delete()

        result = engine.execute(task.id)

        assert result["status"] == TaskStatus.FAILED
        assert result["stopped"] == "failed"
        task.refresh_from_db()
        assert task.last_error.startswith("UnknownSource")
        assert task.error_details["type"] == "UnknownSource"


class TestMaintenance:
    def test_recover_stalled_tasks(self, engine, recording_dispatcher):
        stalled = engine.create_task(TaskType.FULL)
        fresh = engine.create_task(TaskType.FULL)
        CollectionTask.objects.filter(pk__in=[stalled.id, fresh.id]).update(status=TaskStatus.RUNNING)
        CollectionTask.objects.filter(pk=stalled.id).update(
            updated_at=timezone.now() - timedelta(hours=2)
        )

        recovered = engine.recover_stalled_tasks(stale_minutes=30)

        assert recovered == [str(stalled.id)]
        assert recording_dispatcher.dispatched == [str(stalled.id)]

    def test_cleanup_only_removes_old_terminal_tasks(self, engine):
        old_done = engine.create_task(TaskType.FULL)
        old_running = engine.create_task(TaskType.FULL)
        new_done = engine.create_task(TaskType.FULL)
        long_ago = timezone.now() - timedelta(days=60)
        CollectionTask.objects.filter(pk=old_done.id).update(
            status=TaskStatus.COMPLETED, created_at=long_ago
        )
        CollectionTask.objects.filter(pk=old_running.id).update(
            status=TaskStatus.RUNNING, created_at=long_ago
        )
        CollectionTask.objects.filter(pk=new_done.id).update(status=TaskStatus.CANCELLED)

        result = engine.cleanup_old_tasks(days=30, log_days=7)

        assert result["tasks"] == 1
        remaining = set(CollectionTask.objects.values_list("id", flat=True))
        assert remaining == {old_running.id, new_done.id}
        assert not CollectionLogEntry.objects.filter(task_id=old_done.id).exists()

    def test_cleanup_prunes_old_logs(self, engine):
        task = engine.create_task(TaskType.FULL)
        CollectionLogEntry.objects.filter(task_id=task.id).update(
            created_at=timezone.now() - timedelta(days=10)
        )

        result = engine.cleanup_old_tasks(days=30, log_days=7)

        assert result == {"tasks": 0, "logs": 1}
