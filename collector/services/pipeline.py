"""
Item pipeline: RawItem -> CatalogEntry.

Runs the classifier and the normalizers over one parsed item. Shared by the
aggregator (live queries) and the task engine (bulk collection) so both
produce identical entries for identical input.
"""

import logging
from typing import Optional

from collector.models import CatalogItem, VideoSource
from collector.services.classifier import Classifier
from collector.services.deduplicator import CatalogEntry
from collector.services.normalizer import (
    extract_language,
    normalize_area,
    normalize_image_url,
    normalize_play_sources,
    normalize_title,
    normalize_year,
    strip_html,
)
from collector.services.response_parser import RawItem

logger = logging.getLogger(__name__)


def clip(value: str, field_name: str) -> str:
    """Cut a string to the width of a CatalogItem column."""
    limit = CatalogItem._meta.get_field(field_name).max_length
    if value and limit and len(value) > limit:
        logger.debug(f"Clipping {field_name} from {len(value)} to {limit} characters")
        return value[:limit]
    return value


def _fit_url(url: str, field_name: str) -> str:
    """A URL too long for its column is dropped rather than cut."""
    return url if clip(url, field_name) == url else ""


class ItemPipeline:
    """Classify and normalize raw items from one source."""

    def __init__(self, classifier: Optional[Classifier] = None):
        self.classifier = classifier or Classifier()

    def process(self, source: VideoSource, item: RawItem) -> CatalogEntry:
        classification = self.classifier.classify(
            source=source,
            raw_category_id=item.type_id,
            raw_category_name=item.type_name,
            title=item.name,
            extra_hints=[item.remarks, item.tag],
        )

        title = clip(normalize_title(item.name), "title")
        year = clip(normalize_year(item.year), "year")
        area = clip(normalize_area(item.area), "area")

        return CatalogEntry(
            title=title,
            year=year,
            area=area,
            lang=clip(item.lang or extract_language(item.name), "lang"),
            category_id=classification.category_id,
            sub_category_id=classification.sub_category_id,
            sub_category_name=clip(classification.sub_category_name, "sub_category_name"),
            classify_confidence=classification.confidence,
            classify_method=str(classification.method),
            cast=item.actor.strip(),
            director=clip(item.director.strip(), "director"),
            synopsis=strip_html(item.content),
            cover_image_url=_fit_url(normalize_image_url(item.pic), "cover_image_url"),
            remarks=clip(item.remarks, "remarks"),
            play_sources=normalize_play_sources(source.name, item.play_url, item.play_from),
            source_vod_ids={source.name: item.vod_id},
            source_name=source.name,
            metadata_source_name=source.name,
        )
