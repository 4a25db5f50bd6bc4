"""
Sentry reporting for collection work.

The SDK is initialised in settings/base.py when SENTRY_DSN is set; without
it every call here is a cheap no-op. Reporting never raises: a Sentry
problem is logged and the caller carries on.

    add_source_breadcrumb("source-a", url, "Page 3 failed", level="warning")
    capture_collection_error(e, task=task, source=source)
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Substrings of context keys whose values never leave the process
SENSITIVE_FIELDS = (
    "cookie",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "password",
    "secret",
    "token",
)

FILTERED = "[Filtered]"


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return data
    return {
        key: (
            FILTERED
            if any(field in str(key).lower() for field in SENSITIVE_FIELDS)
            else _filter_sensitive_data(value)
        )
        for key, value in data.items()
    }


def add_source_breadcrumb(
    source_name: str,
    url: str,
    message: str = "Source request",
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Leave a trail of source requests leading up to an error.

    Args:
        source_name: VideoSource.name
        url: Endpoint or request URL
        message: What happened
        level: info, warning or error
        extra_data: Page number, error text and the like
    """
    data = {"source": source_name, "url": url}
    data.update(_filter_sensitive_data(extra_data or {}))
    try:
        sentry_sdk.add_breadcrumb(category="collector", message=message, level=level, data=data)
    except Exception as e:
        logger.warning(f"Sentry breadcrumb dropped: {e}")


def capture_collection_error(
    error: Exception,
    task=None,
    source=None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Report an error that stopped a collection task.

    The event is tagged with the task type and source name, and carries the
    task checkpoint so the resume point is visible next to the traceback.
    """
    source_name = source.name if source is not None else "Unknown"
    add_source_breadcrumb(
        source_name=source_name,
        url=getattr(source, "endpoint_url", "") or "Unknown",
        message=f"Error: {type(error).__name__}",
        level="error",
        extra_data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("collector.source", source_name)
            if source is not None:
                scope.set_extra("source_id", str(source.id))
            if task is not None:
                scope.set_tag("collector.task_type", task.task_type)
                scope.set_extra("task_id", str(task.id))
                scope.set_extra("checkpoint", task.checkpoint)
            if extra_context:
                scope.set_extra("collection_context", _filter_sensitive_data(extra_context))
            sentry_sdk.capture_exception(error)
    except Exception as e:
        logger.warning(f"Sentry exception capture failed: {e}")


def capture_alert(
    message: str,
    level: str = "warning",
    source_id: Optional[str] = None,
    source_name: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """Send a message event for a source that crossed its failure threshold."""
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("alert.type", "source_failure_streak")
            if source_name:
                scope.set_tag("collector.source", source_name)
            if source_id:
                scope.set_extra("source_id", source_id)
            if extra_data:
                scope.set_extra("alert_data", _filter_sensitive_data(extra_data))
            sentry_sdk.capture_message(message, level=level)
    except Exception as e:
        logger.warning(f"Sentry alert capture failed: {e}")
