"""
Shared consecutive-failure counters for video sources.

SourceHealth.consecutive_failures lives in the database row of one source;
the counter kept here lives in Redis so that probes, aggregate queries and
collection workers on different hosts all bump the same number. Reaching
the threshold sends one Sentry alert per failure streak.

    tracker = get_failure_tracker()
    tracker.record_failure(source_id, source_name)   # -> streak length
    tracker.record_success(source_id)                # streak over

COLLECTOR_FAILURE_REDIS_URL="" turns tracking off; every call then returns 0.
"""

import logging
from typing import Optional

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5

# A streak with no new failure for a day is forgotten
STREAK_TTL_SECONDS = 24 * 60 * 60


def trigger_threshold_alert(
    source_id: str,
    failure_count: int,
    threshold: int,
    source_name: Optional[str] = None,
) -> None:
    from .sentry_integration import capture_alert

    label = source_name or source_id
    message = f"Source {label} has failed {failure_count} times in a row (threshold {threshold})"
    logger.warning(message)
    capture_alert(
        message=message,
        source_id=source_id,
        source_name=source_name,
        extra_data={"failure_count": failure_count, "threshold": threshold},
    )


class FailureTracker:
    """Redis-backed failure streak per source id."""

    def __init__(
        self,
        redis_client=None,
        threshold: int = DEFAULT_FAILURE_THRESHOLD,
        key_prefix: str = "collector:failures:",
    ):
        self.redis_client = redis_client
        self.threshold = threshold
        self.key_prefix = key_prefix

    def key_for(self, source_id) -> str:
        return f"{self.key_prefix}{source_id}"

    def record_failure(self, source_id, source_name: Optional[str] = None) -> int:
        """
        Extend the failure streak of a source.

        Returns the streak length, or 0 when tracking is off or Redis is
        unreachable. The alert fires on the failure that reaches the
        threshold, not on the ones after it.
        """
        if self.redis_client is None:
            return 0

        key = self.key_for(source_id)
        try:
            streak = int(self.redis_client.incr(key))
            if streak == 1:
                self.redis_client.expire(key, STREAK_TTL_SECONDS)
        except redis.RedisError as e:
            logger.warning(f"Could not count failure for source {source_id}: {e}")
            return 0

        logger.debug(f"Source {source_id} failure streak {streak}/{self.threshold}")
        if streak == self.threshold:
            trigger_threshold_alert(
                source_id=str(source_id),
                failure_count=streak,
                threshold=self.threshold,
                source_name=source_name,
            )
        return streak

    def record_success(self, source_id) -> None:
        if self.redis_client is None:
            return
        try:
            self.redis_client.delete(self.key_for(source_id))
        except redis.RedisError as e:
            logger.warning(f"Could not clear failure streak for source {source_id}: {e}")

    def get_failure_count(self, source_id) -> int:
        if self.redis_client is None:
            return 0
        try:
            raw = self.redis_client.get(self.key_for(source_id))
        except redis.RedisError as e:
            logger.warning(f"Could not read failure streak for source {source_id}: {e}")
            return 0
        return int(raw) if raw else 0


_failure_tracker: Optional[FailureTracker] = None


def get_failure_tracker() -> FailureTracker:
    """Process-wide tracker; connects to Redis on first use."""
    global _failure_tracker

    if _failure_tracker is None:
        _failure_tracker = FailureTracker(
            redis_client=_connect(getattr(settings, "COLLECTOR_FAILURE_REDIS_URL", "")),
            threshold=getattr(settings, "COLLECTOR_FAILURE_THRESHOLD", DEFAULT_FAILURE_THRESHOLD),
        )
    return _failure_tracker


def reset_failure_tracker() -> None:
    global _failure_tracker
    _failure_tracker = None


def _connect(url: str):
    if not url:
        return None
    try:
        client = redis.from_url(url, socket_connect_timeout=2)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Failure tracking disabled, Redis unreachable at {url}: {e}")
        return None
    return client
