"""
Catalog store: the single write path into CatalogItem.

Both the aggregator (persist=True) and the task engine call upsert_entry, so
concurrent writers fold into the same row through the same merge logic
instead of racing into duplicates:

    created  - no valid row for the group key, a row was inserted
    updated  - the merge changed the existing row
    skipped  - the incoming data added nothing
"""

import logging
from typing import List, Optional, Sequence, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q

from collector.models import CatalogItem
from collector.services.deduplicator import CatalogEntry, QualityScorer, merge

logger = logging.getLogger(__name__)

UPSERT_CREATED = "created"
UPSERT_UPDATED = "updated"
UPSERT_SKIPPED = "skipped"

# Attempts when a concurrent insert wins the unique constraint
MAX_UPSERT_ATTEMPTS = 3

ENTRY_FIELDS = (
    "title",
    "year",
    "area",
    "lang",
    "category_id",
    "sub_category_id",
    "sub_category_name",
    "classify_confidence",
    "classify_method",
    "cast",
    "director",
    "synopsis",
    "cover_image_url",
    "remarks",
    "play_sources",
    "source_vod_ids",
    "source_name",
    "metadata_source_name",
    "metadata_weight",
    "quality_score",
)


def entry_from_item(item: CatalogItem) -> CatalogEntry:
    """Build a CatalogEntry from a stored row."""
    values = {name: getattr(item, name) for name in ENTRY_FIELDS}
    values["play_sources"] = list(item.play_sources or [])
    values["source_vod_ids"] = dict(item.source_vod_ids or {})
    return CatalogEntry(id=item.id, group_key=item.group_key, **values)


def apply_entry(item: CatalogItem, entry: CatalogEntry) -> CatalogItem:
    """Copy entry values onto a row (identity fields untouched)."""
    for name in ENTRY_FIELDS:
        setattr(item, name, getattr(entry, name))
    return item


def _insert(entry: CatalogEntry) -> CatalogItem:
    # A row with this id may exist but be invalid (all play URLs reported broken)
    stale = CatalogItem.objects.select_for_update().filter(pk=entry.id).first()
    if stale is not None:
        apply_entry(stale, entry)
        stale.group_key = entry.group_key
        stale.is_valid = True
        stale.save()
        return stale

    item = apply_entry(CatalogItem(id=entry.id, group_key=entry.group_key), entry)
    item.save(force_insert=True)
    return item


def _upsert_once(entry: CatalogEntry, weight: int, scorer: QualityScorer) -> Tuple[str, CatalogItem]:
    with transaction.atomic():
        existing = (
            CatalogItem.objects.select_for_update()
            .filter(group_key=entry.group_key, is_valid=True)
            .first()
        )

        if existing is None:
            result = merge(None, entry, weight, scorer)
            return UPSERT_CREATED, _insert(result.entry)

        result = merge(entry_from_item(existing), entry, weight, scorer)
        if not result.changed:
            return UPSERT_SKIPPED, existing

        apply_entry(existing, result.entry)
        existing.save()
        return UPSERT_UPDATED, existing


def upsert_entry(
    entry: CatalogEntry,
    weight: int,
    scorer: Optional[QualityScorer] = None,
) -> Tuple[str, CatalogItem]:
    """
    Insert or merge one entry into the catalog.

    Args:
        entry: Entry built by the item pipeline for one source
        weight: Weight of the source supplying the entry
        scorer: QualityScorer (default from settings)

    Returns:
        (outcome, row) where outcome is created, updated or skipped
    """
    scorer = scorer or QualityScorer()

    for attempt in range(MAX_UPSERT_ATTEMPTS):
        try:
            return _upsert_once(entry, weight, scorer)
        except IntegrityError:
            # Another writer inserted the group key first; merge into its row
            logger.debug(
                f"Concurrent insert for {entry.group_key}, retrying as merge "
                f"(attempt {attempt + 1}/{MAX_UPSERT_ATTEMPTS})"
            )
            if attempt == MAX_UPSERT_ATTEMPTS - 1:
                raise


def query_catalog(
    category_id: Optional[int] = None,
    keyword: str = "",
    area: str = "",
    year: str = "",
    ids: Optional[Sequence[str]] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> Tuple[List[CatalogEntry], int]:
    """
    Read valid catalog entries without touching any source.

    Returns:
        (entries for the requested page, total matching rows)
    """
    page_size = page_size or getattr(settings, "COLLECTOR_CATALOG_PAGE_SIZE", 20)
    page = max(int(page or 1), 1)

    queryset = CatalogItem.objects.filter(is_valid=True)
    if ids:
        queryset = queryset.filter(id__in=list(ids))
    if category_id is not None:
        queryset = queryset.filter(category_id=category_id)
    if area:
        queryset = queryset.filter(area__contains=area)
    if year:
        queryset = queryset.filter(year=str(year))
    if keyword:
        queryset = queryset.filter(Q(title__icontains=keyword) | Q(cast__icontains=keyword))

    total = queryset.count()
    offset = (page - 1) * page_size
    rows = queryset.order_by("-updated_at", "id")[offset:offset + page_size]
    return [entry_from_item(row) for row in rows], total
