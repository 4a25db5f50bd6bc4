"""
Tests for the monitoring and alerting system.

- Sentry breadcrumbs and error capture with collection context
- Sensitive data filtering
- Consecutive failure tracking via Redis
"""

import pytest
from unittest.mock import Mock, patch, MagicMock

import redis


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis_mock = Mock()
    redis_mock.incr = Mock(return_value=1)
    redis_mock.get = Mock(return_value=b"0")
    redis_mock.delete = Mock(return_value=True)
    redis_mock.expire = Mock(return_value=True)
    return redis_mock


@pytest.fixture
def mock_sentry():
    with patch("collector.monitoring.sentry_integration.sentry_sdk") as sentry:
        sentry.new_scope.return_value = MagicMock()
        yield sentry


class TestSentryErrorCapture:
    """Test Sentry error capture with context."""

    def test_breadcrumb_carries_source_and_url(self, mock_sentry):
        from collector.monitoring import add_source_breadcrumb

        add_source_breadcrumb(
            source_name="source-a",
            url="https://source-a.example.com/api.php/provide/vod/?ac=list",
            message="Probe failed",
            level="warning",
            extra_data={"page": 3},
        )

        breadcrumb_kwargs = mock_sentry.add_breadcrumb.call_args[1]
        assert breadcrumb_kwargs["category"] == "collector"
        assert breadcrumb_kwargs["level"] == "warning"
        assert breadcrumb_kwargs["data"]["source"] == "source-a"
        assert breadcrumb_kwargs["data"]["page"] == 3

    def test_capture_filters_sensitive_data(self, mock_sentry, source_a):
        from collector.monitoring import capture_collection_error

        capture_collection_error(
            ValueError("API key error"),
            source=source_a,
            extra_context={
                "cookies": {"session": "secret123"},
                "headers": {"Authorization": "Bearer secret"},
            },
        )

        data = mock_sentry.add_breadcrumb.call_args[1]["data"]
        assert "secret123" not in str(data)
        assert "Bearer secret" not in str(data)
        mock_sentry.capture_exception.assert_called_once()

    @pytest.mark.django_db
    def test_capture_tags_task(self, mock_sentry):
        from collector.models import CollectionTask, TaskType
        from collector.monitoring import capture_collection_error

        task = CollectionTask.objects.create(task_type=TaskType.FULL, checkpoint={"currentPage": 4})
        scope = mock_sentry.new_scope.return_value.__enter__.return_value

        capture_collection_error(RuntimeError("boom"), task=task)

        scope.set_tag.assert_any_call("collector.task_type", TaskType.FULL)
        scope.set_extra.assert_any_call("task_id", str(task.id))
        scope.set_extra.assert_any_call("checkpoint", {"currentPage": 4})

    def test_sentry_failure_is_logged_not_raised(self, mock_sentry):
        from collector.monitoring import capture_alert

        mock_sentry.new_scope.side_effect = RuntimeError("sentry down")

        capture_alert("threshold reached", source_name="source-a")

    def test_filter_nested(self):
        from collector.monitoring.sentry_integration import _filter_sensitive_data

        filtered = _filter_sensitive_data({"outer": {"api_key": "x", "page": 1}, "token": "y"})

        assert filtered == {"outer": {"api_key": "[Filtered]", "page": 1}, "token": "[Filtered]"}


class TestConsecutiveFailureTracking:
    """Test consecutive failure detection and alerting."""

    def test_increment_failure_counter(self, mock_redis):
        from collector.monitoring import FailureTracker

        tracker = FailureTracker(redis_client=mock_redis)
        count = tracker.record_failure("source-id")

        mock_redis.incr.assert_called_once_with("collector:failures:source-id")
        mock_redis.expire.assert_called_once()
        assert count == 1

    def test_threshold_breach_triggers_alert(self, mock_redis):
        from collector.monitoring import FailureTracker

        mock_redis.incr = Mock(return_value=5)
        tracker = FailureTracker(redis_client=mock_redis, threshold=5)

        with patch("collector.monitoring.failure_tracker.trigger_threshold_alert") as mock_alert:
            count = tracker.record_failure("source-id", source_name="source-a")

        assert count == 5
        mock_alert.assert_called_once()
        alert_kwargs = mock_alert.call_args[1]
        assert alert_kwargs["source_id"] == "source-id"
        assert alert_kwargs["failure_count"] == 5
        assert alert_kwargs["source_name"] == "source-a"

    def test_no_repeat_alert_past_threshold(self, mock_redis):
        from collector.monitoring import FailureTracker

        mock_redis.incr = Mock(return_value=6)
        tracker = FailureTracker(redis_client=mock_redis, threshold=5)

        with patch("collector.monitoring.failure_tracker.trigger_threshold_alert") as mock_alert:
            tracker.record_failure("source-id")

        mock_alert.assert_not_called()

    def test_reset_counter_on_success(self, mock_redis):
        from collector.monitoring import FailureTracker

        tracker = FailureTracker(redis_client=mock_redis)
        tracker.record_success("source-id")

        mock_redis.delete.assert_called_once_with("collector:failures:source-id")

    def test_redis_errors_are_swallowed(self, mock_redis):
        from collector.monitoring import FailureTracker

        mock_redis.incr = Mock(side_effect=redis.ConnectionError("down"))
        mock_redis.get = Mock(side_effect=redis.ConnectionError("down"))
        tracker = FailureTracker(redis_client=mock_redis)

        assert tracker.record_failure("source-id") == 0
        assert tracker.get_failure_count("source-id") == 0

    def test_without_redis_is_a_no_op(self):
        from collector.monitoring import get_failure_tracker

        tracker = get_failure_tracker()

        assert tracker.redis_client is None
        assert tracker.record_failure("source-id") == 0
        assert tracker.get_failure_count("source-id") == 0

    @pytest.mark.django_db
    def test_record_probe_mirrors_into_tracker(self, mock_redis, source_a):
        from collector.monitoring import FailureTracker
        from collector.services.source_registry import record_probe

        tracker = FailureTracker(redis_client=mock_redis)
        with patch("collector.services.source_registry.get_failure_tracker", return_value=tracker):
            record_probe(source_a.id, success=False, latency_ms=100, error="HTTP 500")
            record_probe(source_a.id, success=True, latency_ms=100)

        mock_redis.incr.assert_called_once_with(f"collector:failures:{source_a.id}")
        mock_redis.delete.assert_called_once_with(f"collector:failures:{source_a.id}")
