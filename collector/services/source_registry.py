"""
Source registry and health monitor.

Selects which sources take part in fan-out and collection, probes sources
with a minimal list query, and keeps one rolling SourceHealth row per
source.

Health arithmetic per probe:
    total_checks += 1
    success_rate = success_checks / total_checks * 100
    avg_response_time_ms = round(old * 0.7 + new * 0.3), first probe takes new
    consecutive_failures = 0 on success, += 1 otherwise

Every update runs in its own transaction holding a row lock on the health
row, so concurrent probes of one source serialize instead of losing counts.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from collector.exceptions import UnknownSource
from collector.fetchers.source_client import FetchResponse, SourceClient, build_url
from collector.models import HealthStatus, ResponseFormat, SourceHealth, VideoSource
from collector.monitoring import add_source_breadcrumb, get_failure_tracker
from collector.services.classifier import Classifier, sync_categories
from collector.services.response_parser import FORMAT_AUTO, parse

logger = logging.getLogger(__name__)

EMA_OLD_WEIGHT = 0.7
EMA_NEW_WEIGHT = 0.3


def _failure_threshold() -> int:
    return getattr(settings, "COLLECTOR_MAX_CONSECUTIVE_FAILURES", 3)


def list_active_sources(
    include_low_priority: bool = False,
    healthy_only: bool = True,
    source_ids: Optional[List] = None,
) -> List[VideoSource]:
    """
    Sources eligible for fan-out, highest weight first.

    Args:
        include_low_priority: Include sources flagged is_low_priority
        healthy_only: Drop sources at or past the consecutive failure threshold
        source_ids: Restrict to these ids (order of the result stays by weight)
    """
    queryset = VideoSource.objects.filter(is_active=True).select_related("health")
    if not include_low_priority:
        queryset = queryset.filter(is_low_priority=False)
    if source_ids:
        queryset = queryset.filter(id__in=source_ids)
    if healthy_only:
        queryset = queryset.filter(
            Q(health__isnull=True)
            | Q(health__consecutive_failures__lt=_failure_threshold())
        )
    return list(queryset.order_by("-weight", "name"))


def get_source(source_id) -> VideoSource:
    """
    Fetch one source regardless of health (explicit single-source crawls).

    Raises:
        UnknownSource: If no source has this id
    """
    try:
        return VideoSource.objects.get(pk=source_id)
    except (VideoSource.DoesNotExist, ValidationError, ValueError):
        raise UnknownSource(source_id)


def get_health(source_id) -> SourceHealth:
    """Return the health row for a source, creating it when missing."""
    health, _ = SourceHealth.objects.get_or_create(source_id=source_id)
    return health


def record_probe(
    source_id,
    success: bool,
    latency_ms: int,
    status: Optional[str] = None,
    error: str = "",
) -> SourceHealth:
    """
    Fold one probe or live request outcome into the source's health row.

    Args:
        source_id: VideoSource id
        success: Whether the request produced a usable result
        latency_ms: Observed latency
        status: Explicit status (slow, timeout, error); derived when omitted
        error: Error message for failed outcomes

    Returns:
        The updated SourceHealth
    """
    threshold = _failure_threshold()

    with transaction.atomic():
        SourceHealth.objects.get_or_create(source_id=source_id)
        health = SourceHealth.objects.select_for_update().get(source_id=source_id)

        if health.total_checks == 0:
            health.avg_response_time_ms = int(latency_ms)
        else:
            health.avg_response_time_ms = round(
                health.avg_response_time_ms * EMA_OLD_WEIGHT + latency_ms * EMA_NEW_WEIGHT
            )

        health.total_checks += 1
        if success:
            health.success_checks += 1
            health.consecutive_failures = 0
            health.last_error = ""
            health.status = status or HealthStatus.HEALTHY
        else:
            health.consecutive_failures += 1
            health.last_error = (error or "")[:1000]
            health.status = status or HealthStatus.ERROR
            if health.consecutive_failures >= threshold:
                health.status = HealthStatus.ERROR

        health.success_rate = round(health.success_checks / health.total_checks * 100, 2)
        health.last_checked_at = timezone.now()
        health.save()

    tracker = get_failure_tracker()
    if success:
        tracker.record_success(str(source_id))
    else:
        tracker.record_failure(str(source_id), source_name=health.source.name)

    return health


def record_detected_format(source: VideoSource, detected_format: Optional[str]) -> bool:
    """
    Persist a learned response format for an auto-detect source.

    Returns:
        True when the source record was updated
    """
    if source.response_format != ResponseFormat.AUTO or detected_format not in (
        ResponseFormat.JSON, ResponseFormat.XML
    ):
        return False

    updated = VideoSource.objects.filter(
        pk=source.pk, response_format=ResponseFormat.AUTO
    ).update(response_format=detected_format, updated_at=timezone.now())
    source.response_format = detected_format
    if updated:
        logger.info(f"Learned response format {detected_format} for {source.name}")
    return bool(updated)


@dataclass
class ProbeOutcome:
    """Result of a single probe, before it is recorded."""

    source_id: str
    source_name: str
    status: str
    success: bool
    latency_ms: int
    error: str = ""
    detected_format: Optional[str] = None
    item_count: int = 0


def classify_probe(response: FetchResponse, declared_format: str) -> ProbeOutcome:
    """
    Turn a fetch response into a health status.

    Parseable and non-empty is healthy, or slow past the latency threshold.
    Timeouts are timeout; everything else is error.
    """
    slow_threshold = getattr(settings, "COLLECTOR_SLOW_THRESHOLD_MS", 3000)
    outcome = ProbeOutcome(
        source_id="",
        source_name="",
        status=HealthStatus.ERROR,
        success=False,
        latency_ms=response.elapsed_ms,
    )

    if not response.success:
        outcome.status = HealthStatus.TIMEOUT if response.timed_out else HealthStatus.ERROR
        outcome.error = response.error or "Request failed"
        return outcome

    parsed = parse(response.content, declared_format)
    if not parsed.success:
        outcome.error = f"{parsed.error.code}: {parsed.error.message}"
        return outcome
    if not parsed.items:
        outcome.error = "Empty listing"
        outcome.detected_format = parsed.detected_format
        return outcome

    outcome.success = True
    outcome.item_count = len(parsed.items)
    outcome.detected_format = parsed.detected_format
    outcome.status = (
        HealthStatus.SLOW if response.elapsed_ms > slow_threshold else HealthStatus.HEALTHY
    )
    return outcome


def _fetch_probe(source: VideoSource, client: SourceClient, timeout: float) -> ProbeOutcome:
    """Network half of a probe. Touches no database state."""
    url = build_url(source.endpoint_url, action="list", page=1)
    response = client.fetch(url, timeout=timeout)
    outcome = classify_probe(response, source.response_format or FORMAT_AUTO)
    outcome.source_id = str(source.pk)
    outcome.source_name = source.name
    return outcome


def _record_outcome(source: VideoSource, outcome: ProbeOutcome) -> SourceHealth:
    if outcome.success and outcome.detected_format:
        record_detected_format(source, outcome.detected_format)

    if not outcome.success:
        add_source_breadcrumb(
            source_name=source.name,
            url=source.endpoint_url,
            message=f"Probe failed: {outcome.status}",
            level="warning",
            extra_data={"error": outcome.error},
        )
        logger.warning(f"Probe of {source.name} failed ({outcome.status}): {outcome.error}")

    return record_probe(
        source.pk,
        success=outcome.success,
        latency_ms=outcome.latency_ms,
        status=outcome.status,
        error=outcome.error,
    )


def probe_source(source: VideoSource, client: Optional[SourceClient] = None) -> SourceHealth:
    """
    Probe one source with ``ac=list&pg=1`` and record the outcome.
    """
    timeout = getattr(settings, "COLLECTOR_PROBE_TIMEOUT", 10)
    client = client or SourceClient(timeout=timeout, max_retries=0)
    outcome = _fetch_probe(source, client, timeout)
    return _record_outcome(source, outcome)


def probe_all_sources(
    client: Optional[SourceClient] = None,
    include_inactive: bool = False,
) -> Dict[str, object]:
    """
    Probe every active source.

    Requests run on a bounded thread pool; health rows are written from the
    calling thread as results arrive.

    Returns:
        Summary dict with totals per status and per-source results
    """
    timeout = getattr(settings, "COLLECTOR_PROBE_TIMEOUT", 10)
    workers = max(1, getattr(settings, "COLLECTOR_PROBE_WORKERS", 5))
    client = client or SourceClient(timeout=timeout, max_retries=0)

    queryset = VideoSource.objects.all()
    if not include_inactive:
        queryset = queryset.filter(is_active=True)
    sources = list(queryset.order_by("-weight", "name"))

    summary = {
        "total": len(sources),
        "statuses": {},
        "sources": {},
    }
    if not sources:
        return summary

    with ThreadPoolExecutor(max_workers=min(workers, len(sources))) as executor:
        outcomes = list(executor.map(lambda s: _fetch_probe(s, client, timeout), sources))

    for source, outcome in zip(sources, outcomes):
        health = _record_outcome(source, outcome)
        summary["statuses"][health.status] = summary["statuses"].get(health.status, 0) + 1
        summary["sources"][source.name] = {
            "status": health.status,
            "latency_ms": outcome.latency_ms,
            "consecutive_failures": health.consecutive_failures,
        }

    logger.info(
        f"Probed {summary['total']} sources: "
        + ", ".join(f"{status}={count}" for status, count in sorted(summary["statuses"].items()))
    )
    return summary


def health_snapshot() -> List[Dict[str, object]]:
    """Health of every source, for the health endpoint."""
    rows = []
    for source in VideoSource.objects.select_related("health").order_by("-weight", "name"):
        health = getattr(source, "health", None)
        rows.append({
            "id": str(source.id),
            "name": source.name,
            "is_active": source.is_active,
            "response_format": source.response_format,
            "status": health.status if health else HealthStatus.UNKNOWN,
            "avg_response_time_ms": health.avg_response_time_ms if health else 0,
            "success_rate": health.success_rate if health else 0.0,
            "consecutive_failures": health.consecutive_failures if health else 0,
            "last_checked_at": (
                health.last_checked_at.isoformat() if health and health.last_checked_at else None
            ),
        })
    return rows


def sync_source_categories(
    source: VideoSource,
    client: Optional[SourceClient] = None,
    classifier: Optional[Classifier] = None,
) -> Dict[str, int]:
    """
    Fetch a source's own taxonomy and persist learned category mappings.

    Raises:
        SourceFetchError: If the listing cannot be fetched
        ValueError: If the response cannot be parsed

    Returns:
        Dict with created, updated and skipped counts
    """
    client = client or SourceClient()
    url = build_url(source.endpoint_url, action="list", page=1)
    body = client.get(url)

    parsed = parse(body, source.response_format or FORMAT_AUTO)
    if not parsed.success:
        raise ValueError(f"{parsed.error.code}: {parsed.error.message}")
    record_detected_format(source, parsed.detected_format)

    if not parsed.categories:
        logger.warning(f"{source.name} exposes no category taxonomy")
    return sync_categories(source, parsed.categories, classifier=classifier)
