"""
Deduplication and language merging for catalog entries.

Items from different sources (and language/quality variants of one title,
e.g. "某剧 国语" and "某剧 粤语") share a group key built from the
normalized title and year. All of them fold into a single CatalogEntry whose
play_sources list is keyed by source name.

Merge policy:
- play sources from the incoming source replace that source's previous entry
- descriptive metadata is only replaced when the incoming source weight is
  strictly higher than the weight of the source that supplied it
- the classification with the best classification_rank wins, independent
  of arrival order
- quality_score is recomputed from source weight and completeness
"""

import copy
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings

from collector.services.normalizer import count_episodes, normalize_title

logger = logging.getLogger(__name__)

_WHITESPACE_PATTERN = re.compile(r"\s+")

# CatalogItem.group_key column width
GROUP_KEY_MAX_LENGTH = 255

# Fields owned by whichever source currently has the highest weight
METADATA_FIELDS = (
    "synopsis",
    "cast",
    "director",
    "cover_image_url",
    "area",
    "lang",
    "remarks",
)

CLASSIFICATION_FIELDS = (
    "category_id",
    "sub_category_id",
    "sub_category_name",
    "classify_confidence",
    "classify_method",
)

DEFAULT_COMPLETENESS_WEIGHTS = {
    "cover": 20,
    "cast": 15,
    "director": 10,
    "synopsis": 25,
    "episodes": 30,
}


def group_key(title: str, year: Any) -> str:
    """
    Build the dedup key for a title/year pair.

    The base title (language and quality markers removed) is lowercased and
    stripped of all whitespace, then joined with the year.
    """
    base = normalize_title(title).lower()
    base = _WHITESPACE_PATTERN.sub("", base)
    suffix = f"|{year or ''}"
    return base[:GROUP_KEY_MAX_LENGTH - len(suffix)] + suffix


def catalog_id(title: str, year: Any, area: str = "") -> str:
    """Deterministic catalog id for normalized (title, year, area)."""
    raw = f"{group_key(title, year)}|{(area or '').strip().lower()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@dataclass
class CatalogEntry:
    """In-memory catalog item, shared by the aggregator and the catalog store."""

    title: str
    year: str = ""
    area: str = ""
    lang: str = ""
    category_id: int = 0
    sub_category_id: Optional[int] = None
    sub_category_name: str = ""
    classify_confidence: float = 0.0
    classify_method: str = "fallback"
    cast: str = ""
    director: str = ""
    synopsis: str = ""
    cover_image_url: str = ""
    remarks: str = ""
    play_sources: List[Dict[str, Any]] = field(default_factory=list)
    source_vod_ids: Dict[str, str] = field(default_factory=dict)
    source_name: str = ""
    metadata_source_name: str = ""
    metadata_weight: int = 0
    quality_score: float = 0.0
    id: str = ""
    group_key: str = ""

    def __post_init__(self):
        if not self.group_key:
            self.group_key = group_key(self.title, self.year)
        if not self.id:
            self.id = catalog_id(self.title, self.year, self.area)

    @property
    def episode_count(self) -> int:
        return count_episodes(self.play_sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "area": self.area,
            "lang": self.lang,
            "category_id": self.category_id,
            "sub_category_id": self.sub_category_id,
            "sub_category_name": self.sub_category_name,
            "classify_confidence": self.classify_confidence,
            "classify_method": self.classify_method,
            "cast": self.cast,
            "director": self.director,
            "synopsis": self.synopsis,
            "cover_image_url": self.cover_image_url,
            "remarks": self.remarks,
            "play_sources": self.play_sources,
            "source_name": self.source_name,
            "quality_score": self.quality_score,
        }


class QualityScorer:
    """
    Configurable quality score: source weight x completeness.

    Completeness is the sum of points for present fields (cover, cast,
    director, a synopsis longer than 20 characters, at least one valid
    episode), scaled to 0-1. The weight factor defaults to weight / 100.
    """

    def __init__(self, completeness_weights: Optional[Dict[str, int]] = None):
        if completeness_weights is None:
            completeness_weights = getattr(
                settings, "COLLECTOR_QUALITY_WEIGHTS", DEFAULT_COMPLETENESS_WEIGHTS
            )
        self.completeness_weights = dict(completeness_weights)

    def completeness(self, entry: CatalogEntry) -> float:
        weights = self.completeness_weights
        points = 0
        if entry.cover_image_url:
            points += weights.get("cover", 0)
        if entry.cast:
            points += weights.get("cast", 0)
        if entry.director:
            points += weights.get("director", 0)
        if len(entry.synopsis or "") > 20:
            points += weights.get("synopsis", 0)
        if entry.episode_count > 0:
            points += weights.get("episodes", 0)

        total = sum(weights.values()) or 1
        return points / total

    def score(self, entry: CatalogEntry, weight: Optional[int] = None) -> float:
        if weight is None:
            weight = entry.metadata_weight
        return round(max(weight, 0) * self.completeness(entry), 2)


@dataclass
class MergeResult:
    entry: CatalogEntry
    changed: bool
    metadata_replaced: bool = False


def classification_rank(entry: "CatalogEntry") -> tuple:
    """
    Sort key for competing classifications of one group.

    Highest confidence wins; any category beats the unclassified bucket;
    remaining ties go to the lowest category and sub-category id. The key
    depends only on the classification itself, so the winner is the same
    whatever order sources arrive in.
    """
    return (
        entry.classify_confidence,
        entry.category_id != 0,
        -entry.category_id,
        -(entry.sub_category_id or 0),
        entry.sub_category_name,
    )


def merge_play_sources(
    existing: List[Dict[str, Any]],
    incoming: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Union play sources keyed by source name.

    All groups of a source present in incoming replace that source's
    previous groups, at the position its first group used to occupy.
    """
    incoming = incoming or []
    replaced = {group["source_name"] for group in incoming}
    merged = []
    inserted = set()
    for group in existing or []:
        name = group["source_name"]
        if name not in replaced:
            merged.append(copy.deepcopy(group))
        elif name not in inserted:
            merged.extend(copy.deepcopy(g) for g in incoming if g["source_name"] == name)
            inserted.add(name)
    for group in incoming:
        if group["source_name"] not in inserted:
            merged.append(copy.deepcopy(group))
    return merged


def merge(
    existing: Optional[CatalogEntry],
    incoming: CatalogEntry,
    incoming_weight: int,
    scorer: Optional[QualityScorer] = None,
) -> MergeResult:
    """
    Fold an incoming entry into an existing one.

    Args:
        existing: Current entry for the group key, or None
        incoming: Entry built from one source's raw item
        incoming_weight: Weight of the source supplying incoming
        scorer: QualityScorer used to recompute quality_score

    Returns:
        MergeResult; changed is False when nothing observable changed
    """
    scorer = scorer or QualityScorer()

    if existing is None:
        entry = copy.deepcopy(incoming)
        entry.metadata_source_name = entry.metadata_source_name or entry.source_name
        entry.metadata_weight = incoming_weight
        entry.quality_score = scorer.score(entry, incoming_weight)
        return MergeResult(entry=entry, changed=True, metadata_replaced=True)

    entry = copy.deepcopy(existing)
    before = entry.to_dict()

    entry.play_sources = merge_play_sources(entry.play_sources, incoming.play_sources)
    entry.source_vod_ids = {**entry.source_vod_ids, **incoming.source_vod_ids}

    metadata_replaced = False
    if incoming_weight > entry.metadata_weight:
        for field_name in METADATA_FIELDS:
            value = getattr(incoming, field_name)
            if value:
                setattr(entry, field_name, value)
        entry.metadata_source_name = incoming.source_name
        entry.metadata_weight = incoming_weight
        metadata_replaced = True
    else:
        # Fill gaps without overriding a heavier source
        for field_name in METADATA_FIELDS:
            if not getattr(entry, field_name) and getattr(incoming, field_name):
                setattr(entry, field_name, getattr(incoming, field_name))

    if classification_rank(incoming) > classification_rank(entry):
        for field_name in CLASSIFICATION_FIELDS:
            setattr(entry, field_name, getattr(incoming, field_name))

    entry.quality_score = scorer.score(entry, entry.metadata_weight)
    changed = entry.to_dict() != before or entry.source_vod_ids != existing.source_vod_ids
    return MergeResult(entry=entry, changed=changed, metadata_replaced=metadata_replaced)


class Deduplicator:
    """
    Groups entries by dedup key in memory.

    Used by the aggregator to fold one request's results; arrival order does
    not affect identity.
    """

    def __init__(self, scorer: Optional[QualityScorer] = None):
        self.scorer = scorer or QualityScorer()
        self._entries: Dict[str, CatalogEntry] = {}

    def add(self, entry: CatalogEntry, weight: int) -> CatalogEntry:
        result = merge(self._entries.get(entry.group_key), entry, weight, self.scorer)
        self._entries[entry.group_key] = result.entry
        return result.entry

    def entries(self) -> List[CatalogEntry]:
        return sorted(
            self._entries.values(),
            key=lambda e: (-e.quality_score, e.title, e.group_key),
        )

    def __len__(self):
        return len(self._entries)
