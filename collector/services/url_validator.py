"""
Play URL validation.

Two ways a play address gets retired:

- report_broken_urls: an operator or client reports specific URLs
- validate_catalog_batch: a scheduled HEAD check of the first episode of
  every play group, oldest-checked items first

Broken episodes are removed from play_sources. Groups left without episodes
are dropped, and an item left without any group is marked invalid so it
disappears from the catalog (and frees its group key for re-collection).
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

import requests
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from collector.models import CatalogItem

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 5

# Items are re-checked at most once per this many days
RECHECK_AFTER_DAYS = 7


def validate_play_url(url: str, session: Optional[requests.Session] = None, timeout: float = None) -> bool:
    """HEAD the URL; any 2xx/3xx answer counts as alive."""
    timeout = timeout or getattr(settings, "COLLECTOR_URL_CHECK_TIMEOUT", DEFAULT_CHECK_TIMEOUT)
    http = session or requests
    try:
        response = http.head(url, timeout=timeout, allow_redirects=True)
    except requests.exceptions.RequestException as e:
        logger.debug(f"Play URL check failed for {url}: {e}")
        return False
    return response.status_code < 400


def remove_urls(play_sources: List[Dict[str, Any]], broken: Iterable[str]) -> List[Dict[str, Any]]:
    """Drop episodes whose URL is in broken, then drop empty groups."""
    broken = set(broken)
    cleaned = []
    for group in play_sources or []:
        episodes = [ep for ep in group.get("episodes", []) if ep.get("url") not in broken]
        if episodes:
            cleaned.append({**group, "episodes": episodes})
    return cleaned


def report_broken_urls(item_id: str, urls: Iterable[str], reported_by: str = "user") -> Dict[str, Any]:
    """
    Remove reported URLs from a catalog item.

    Raises:
        CatalogItem.DoesNotExist: If the item is unknown

    Returns:
        Dict with removed, remaining_episodes and is_valid
    """
    urls = [url for url in urls if url]
    with transaction.atomic():
        item = CatalogItem.objects.select_for_update().get(pk=item_id)
        before = item.episode_count
        item.play_sources = remove_urls(item.play_sources, urls)
        removed = before - item.episode_count
        if not item.play_sources:
            item.is_valid = False
        item.save()

    if not item.is_valid:
        logger.info(f"Marked {item.id} ({item.title}) invalid, all play URLs reported broken")
    elif removed:
        logger.info(f"Removed {removed} broken play URLs from {item.id} (reported by {reported_by})")

    return {
        "id": item.id,
        "removed": removed,
        "remaining_episodes": item.episode_count,
        "is_valid": item.is_valid,
    }


def validate_catalog_batch(limit: int = 100, session: Optional[requests.Session] = None) -> Dict[str, int]:
    """
    HEAD-check the first episode of each play group for stale items.

    Returns:
        Dict with checked, groups_removed and invalidated counts
    """
    cutoff = timezone.now() - timedelta(days=RECHECK_AFTER_DAYS)
    items = list(
        CatalogItem.objects.filter(is_valid=True)
        .filter(Q(play_checked_at__isnull=True) | Q(play_checked_at__lt=cutoff))
        .order_by("play_checked_at", "updated_at")[:limit]
    )

    summary = {"checked": 0, "groups_removed": 0, "invalidated": 0}
    for item in items:
        broken = []
        for group in item.play_sources or []:
            episodes = group.get("episodes") or []
            if episodes and not validate_play_url(episodes[0]["url"], session=session):
                broken.extend(ep["url"] for ep in episodes)

        summary["checked"] += 1
        if broken:
            groups_before = len(item.play_sources)
            result = report_broken_urls(item.id, broken, reported_by="system")
            remaining = CatalogItem.objects.values_list("play_sources", flat=True).get(pk=item.id)
            summary["groups_removed"] += groups_before - len(remaining)
            if not result["is_valid"]:
                summary["invalidated"] += 1

        CatalogItem.objects.filter(pk=item.id).update(play_checked_at=timezone.now())

    logger.info(
        f"Validated {summary['checked']} items: {summary['groups_removed']} groups removed, "
        f"{summary['invalidated']} invalidated"
    )
    return summary
