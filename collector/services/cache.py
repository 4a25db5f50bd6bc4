"""
Cache helpers for the collector.

TTLCache is a small in-process cache for learned lookups (category
mappings, source formats). Instances are passed to the services that use
them, so tests can create a fresh one or call invalidate() between cases.

QueryCache wraps a Django cache backend and stores serialized aggregate
responses as bytes.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Hashable, Optional

import cachetools
from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """
    Thread-safe key/value cache with a fixed time-to-live.

    A lock around cachetools.TTLCache, which is not safe to share between
    the aggregator's threads on its own.

    Usage:
        cache = TTLCache(ttl_seconds=300)
        mappings = cache.get_or_load("mappings", load_mappings)
        cache.invalidate()  # after mappings change
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = 1024,
    ):
        self.ttl_seconds = ttl_seconds
        self._entries = cachetools.TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self):
        with self._lock:
            self._entries.expire()
            return len(self._entries)


class QueryCache:
    """
    Short-lived response cache in front of the aggregator.

    Implements the get(key) -> bytes | None / put(key, bytes, ttl) contract
    on top of django.core.cache.
    """

    def __init__(self, alias: str = "default", key_prefix: str = "collector:query:"):
        self.alias = alias
        self.key_prefix = key_prefix

    @property
    def backend(self):
        return caches[self.alias]

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Build a stable key from JSON-serializable parts."""
        raw = json.dumps(parts, sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.backend.get(f"{self.key_prefix}{key}")
        except Exception as e:
            logger.warning(f"Query cache read failed: {e}")
            return None

    def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds is None:
            ttl_seconds = getattr(settings, "COLLECTOR_QUERY_CACHE_TTL", 60)
        try:
            self.backend.set(f"{self.key_prefix}{key}", value, ttl_seconds)
        except Exception as e:
            logger.warning(f"Query cache write failed: {e}")

    def delete(self, key: str) -> None:
        self.backend.delete(f"{self.key_prefix}{key}")
