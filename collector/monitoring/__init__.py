"""
Monitoring and alerting for the collector.

- Sentry error tracking with collection context
- Consecutive failure tracking per source via Redis
"""

from .sentry_integration import add_source_breadcrumb, capture_alert, capture_collection_error
from .failure_tracker import FailureTracker, get_failure_tracker, reset_failure_tracker

__all__ = [
    "add_source_breadcrumb",
    "capture_alert",
    "capture_collection_error",
    "FailureTracker",
    "get_failure_tracker",
    "reset_failure_tracker",
]
