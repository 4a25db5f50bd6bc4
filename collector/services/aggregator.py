"""
Federated query aggregator.

Fans one catalog query out to every eligible source, tolerates partial
failure, and folds the answers into one deduplicated list.

Flow:
    1. cache_only queries are answered from the catalog store, no network
    2. the query cache is consulted (exact query + options)
    3. one request per candidate source is submitted to a thread pool
    4. results are parsed in the worker, then classified, normalized and
       merged on the calling thread as they complete
    5. sources that error, fail to parse, cannot be stored or miss the
       deadline are reported in failed_sources; they never abort the call

Worker threads only do network I/O and parsing. Everything that touches the
database (health, learned formats, category mappings, persistence) runs on
the calling thread.

Usage:
    aggregator = Aggregator()
    result = aggregator.aggregate(
        CatalogQuery(action="search", keyword="某剧"),
        AggregateOptions(timeout_ms=5000),
    )
    result.items, result.succeeded_sources, result.failed_sources
"""

import json
import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction

from collector.fetchers.source_client import (
    ACTION_DETAIL,
    ACTION_LIST,
    FetchResponse,
    SourceClient,
    build_url,
)
from collector.models import CategoryMapping, HealthStatus, VideoSource
from collector.monitoring import add_source_breadcrumb
from collector.services import catalog_store
from collector.services.cache import QueryCache
from collector.services.classifier import LOW_PRIORITY_CATEGORY_IDS, Classifier
from collector.services.deduplicator import CatalogEntry, Deduplicator, QualityScorer
from collector.services.pipeline import ItemPipeline
from collector.services.response_parser import ParsedPayload, parse
from collector.services.source_registry import (
    list_active_sources,
    record_detected_format,
    record_probe,
)

logger = logging.getLogger(__name__)

ACTION_SEARCH = "search"
QUERY_ACTIONS = (ACTION_LIST, ACTION_DETAIL, ACTION_SEARCH)

# Extra time on top of timeout_ms before outstanding sources are abandoned
DEADLINE_GRACE_MS = 500


@dataclass
class CatalogQuery:
    """A catalog request as seen by the aggregator."""

    action: str = ACTION_LIST
    category_id: Optional[int] = None
    keyword: str = ""
    page: int = 1
    ids: List[str] = field(default_factory=list)
    area: str = ""
    year: str = ""
    hours: Optional[int] = None

    def __post_init__(self):
        if self.action not in QUERY_ACTIONS:
            raise ValueError(f"Unsupported action: {self.action}")
        self.page = max(int(self.page or 1), 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AggregateOptions:
    timeout_ms: Optional[int] = None
    include_low_priority_sources: bool = False
    cache_only: bool = False
    source_ids: Optional[List[str]] = None
    persist: bool = False
    use_cache: bool = True
    record_health: bool = True

    def cache_key_parts(self) -> Dict[str, Any]:
        return {
            "timeout_ms": self.timeout_ms,
            "include_low_priority_sources": self.include_low_priority_sources,
            "source_ids": sorted(str(s) for s in self.source_ids or []),
        }


@dataclass
class AggregateResult:
    items: List[CatalogEntry] = field(default_factory=list)
    succeeded_sources: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False
    total: int = 0

    @property
    def degraded(self) -> bool:
        return bool(self.failed_sources)

    def to_bytes(self) -> bytes:
        payload = {
            "items": [asdict(item) for item in self.items],
            "succeeded_sources": self.succeeded_sources,
            "failed_sources": self.failed_sources,
            "errors": self.errors,
            "total": self.total,
        }
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "AggregateResult":
        payload = json.loads(raw.decode("utf-8"))
        return cls(
            items=[CatalogEntry(**item) for item in payload["items"]],
            succeeded_sources=payload["succeeded_sources"],
            failed_sources=payload["failed_sources"],
            errors=payload.get("errors", {}),
            from_cache=True,
            total=payload.get("total", 0),
        )


@dataclass
class SourceFetch:
    """Worker output for one source."""

    response: FetchResponse
    parsed: Optional[ParsedPayload] = None
    error: str = ""


def _fetch_and_parse(
    client: SourceClient,
    url: str,
    declared_format: str,
    timeout_seconds: float,
) -> SourceFetch:
    """Runs in a worker thread. Must not touch the database."""
    try:
        response = client.fetch(url, timeout=timeout_seconds)
    except Exception as e:
        logger.warning(f"Unexpected fetch failure for {url}: {e}")
        return SourceFetch(
            response=FetchResponse(content=b"", status_code=0, elapsed_ms=0, success=False),
            error=str(e),
        )

    if not response.success:
        return SourceFetch(response=response, error=response.error or "Request failed")

    parsed = parse(response.content, declared_format)
    if not parsed.success:
        return SourceFetch(
            response=response,
            parsed=parsed,
            error=f"{parsed.error.code}: {parsed.error.message}",
        )
    return SourceFetch(response=response, parsed=parsed)


class Aggregator:
    """
    Real-time catalog fan-out over live sources.

    Collaborators are injectable so tests can pass a fresh classifier cache
    or a query cache bound to a specific backend.
    """

    def __init__(
        self,
        client: Optional[SourceClient] = None,
        classifier: Optional[Classifier] = None,
        query_cache: Optional[QueryCache] = None,
        scorer: Optional[QualityScorer] = None,
        max_workers: Optional[int] = None,
    ):
        # Live queries never retry, the deadline is the budget
        self.client = client or SourceClient(max_retries=0)
        self.pipeline = ItemPipeline(classifier or Classifier())
        self.query_cache = query_cache or QueryCache()
        self.scorer = scorer or QualityScorer()
        self.max_workers = max_workers or getattr(settings, "COLLECTOR_AGGREGATE_MAX_WORKERS", 8)

    def default_timeout_ms(self, query: CatalogQuery) -> int:
        if query.action == ACTION_SEARCH:
            return getattr(settings, "COLLECTOR_SEARCH_TIMEOUT_MS", 5000)
        return getattr(settings, "COLLECTOR_AGGREGATE_TIMEOUT_MS", 3000)

    def aggregate(
        self,
        query: CatalogQuery,
        options: Optional[AggregateOptions] = None,
    ) -> AggregateResult:
        """
        Answer a catalog query from live sources (or the store when cache_only).

        Args:
            query: What to fetch
            options: Timeout, source selection and caching behaviour

        Returns:
            AggregateResult with merged items and per-source outcome
        """
        options = options or AggregateOptions()

        if options.cache_only:
            return self._from_store(query)

        cache_key = QueryCache.make_key(query.to_dict(), options.cache_key_parts())
        if options.use_cache:
            cached = self.query_cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Query cache hit for {query.action} page {query.page}")
                return AggregateResult.from_bytes(cached)

        sources = list_active_sources(
            include_low_priority=options.include_low_priority_sources,
            source_ids=options.source_ids,
        )
        if not sources:
            logger.warning("No eligible sources for aggregate query")
            return AggregateResult()

        timeout_ms = options.timeout_ms or self.default_timeout_ms(query)
        result = self._fan_out(query, options, sources, timeout_ms)

        if result.succeeded_sources and options.use_cache:
            self.query_cache.put(cache_key, result.to_bytes())
        return result

    def _from_store(self, query: CatalogQuery) -> AggregateResult:
        entries, total = catalog_store.query_catalog(
            category_id=query.category_id,
            keyword=query.keyword,
            area=query.area,
            year=query.year,
            ids=query.ids,
            page=query.page,
        )
        return AggregateResult(items=entries, from_cache=True, total=total)

    def _raw_category_for(self, source: VideoSource, category_id: Optional[int]) -> Optional[str]:
        """A raw category id of this source mapped to the canonical category."""
        if category_id is None:
            return None
        try:
            mapping = (
                CategoryMapping.objects.filter(source=source, target_category_id=category_id)
                .order_by("-confidence", "source_category_id")
                .first()
            )
        except DatabaseError as e:
            logger.warning(f"Category mapping lookup failed for {source.name}: {e}")
            return None
        return mapping.source_category_id if mapping else None

    def build_source_url(self, source: VideoSource, query: CatalogQuery) -> str:
        if query.action == ACTION_SEARCH:
            return build_url(
                source.endpoint_url, action=ACTION_DETAIL, page=query.page, keyword=query.keyword
            )
        if query.action == ACTION_DETAIL:
            return build_url(source.endpoint_url, action=ACTION_DETAIL, ids=query.ids)
        return build_url(
            source.endpoint_url,
            action=ACTION_DETAIL,
            page=query.page,
            category_id=self._raw_category_for(source, query.category_id),
            hours=query.hours,
        )

    def _fan_out(
        self,
        query: CatalogQuery,
        options: AggregateOptions,
        sources: List[VideoSource],
        timeout_ms: int,
    ) -> AggregateResult:
        result = AggregateResult()
        dedup = Deduplicator(self.scorer)
        timeout_seconds = timeout_ms / 1000
        deadline = time.monotonic() + (timeout_ms + DEADLINE_GRACE_MS) / 1000

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(sources)))
        futures = {}
        try:
            for source in sources:
                url = self.build_source_url(source, query)
                future = executor.submit(
                    _fetch_and_parse, self.client, url, source.response_format, timeout_seconds
                )
                futures[future] = source

            pending = set(futures)
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    self._fold(futures[future], future.result(), query, options, dedup, result)

            for future in pending:
                source = futures[future]
                future.cancel()
                self._mark_failed(
                    source, result, "Deadline exceeded", HealthStatus.TIMEOUT, timeout_ms, options
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result.items = dedup.entries()
        result.total = len(result.items)
        logger.info(
            f"Aggregated {query.action} page {query.page}: {result.total} items, "
            f"{len(result.succeeded_sources)} ok, {len(result.failed_sources)} failed"
        )
        return result

    def _mark_failed(
        self,
        source: VideoSource,
        result: AggregateResult,
        error: str,
        status: str,
        latency_ms: int,
        options: AggregateOptions,
    ) -> None:
        result.failed_sources.append(source.name)
        result.errors[source.name] = error
        add_source_breadcrumb(
            source_name=source.name,
            url=source.endpoint_url,
            message="Aggregate request failed",
            level="warning",
            extra_data={"error": error},
        )
        logger.warning(f"Source {source.name} failed during aggregate: {error}")
        if options.record_health:
            record_probe(source.pk, success=False, latency_ms=latency_ms, status=status, error=error)

    def _fold(
        self,
        source: VideoSource,
        fetched: SourceFetch,
        query: CatalogQuery,
        options: AggregateOptions,
        dedup: Deduplicator,
        result: AggregateResult,
    ) -> None:
        if fetched.error:
            status = HealthStatus.TIMEOUT if fetched.response.timed_out else HealthStatus.ERROR
            self._mark_failed(
                source, result, fetched.error, status, fetched.response.elapsed_ms, options
            )
            return

        try:
            entries = self._collect(source, fetched, query, options)
        except Exception as e:
            logger.exception(f"Could not fold results of {source.name}")
            self._mark_failed(
                source,
                result,
                f"{type(e).__name__}: {e}",
                HealthStatus.ERROR,
                fetched.response.elapsed_ms,
                options,
            )
            return

        result.succeeded_sources.append(source.name)
        record_detected_format(source, fetched.parsed.detected_format)
        if options.record_health:
            record_probe(source.pk, success=True, latency_ms=fetched.response.elapsed_ms)
        for entry in entries:
            dedup.add(entry, source.weight)

    def _collect(
        self,
        source: VideoSource,
        fetched: SourceFetch,
        query: CatalogQuery,
        options: AggregateOptions,
    ) -> List[CatalogEntry]:
        """Normalize one source's items; with persist, store all of them or none."""
        entries = []
        for item in fetched.parsed.items:
            entry = self.pipeline.process(source, item)
            if self._matches(entry, query, options):
                entries.append(entry)
        if options.persist:
            with transaction.atomic():
                for entry in entries:
                    catalog_store.upsert_entry(entry, source.weight, self.scorer)
        return entries

    @staticmethod
    def _matches(entry: CatalogEntry, query: CatalogQuery, options: AggregateOptions) -> bool:
        if query.category_id is not None and entry.category_id != query.category_id:
            return False
        if query.year and entry.year != str(query.year):
            return False
        if query.area and query.area not in entry.area:
            return False
        if not options.include_low_priority_sources and entry.category_id in LOW_PRIORITY_CATEGORY_IDS:
            return False
        return True
