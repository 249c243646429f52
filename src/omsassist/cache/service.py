"""Bounded TTL cache shared by the router, data source and vector search."""

from __future__ import annotations

import hashlib
import json
import pickle
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from cachetools import TLRUCache

from omsassist.metrics.observability import PipelineMetrics, get_logger
from omsassist.models import CacheEntry

T = TypeVar("T")


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


def normalize_query(text: str) -> str:
    return " ".join(text.lower().split())


def make_cache_key(namespace: str, **params: Any) -> str:
    """Derive a deterministic key from a namespace and request parameters."""

    normalized = {
        name: normalize_query(value) if isinstance(value, str) else value
        for name, value in params.items()
    }
    payload = json.dumps(normalized, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{namespace}:{digest}"


@dataclass(frozen=True)
class CacheStats:
    hit_rate: float
    total_entries: int
    total_size: int
    average_age: float
    hits: int
    misses: int
    evictions: int
    expirations: int

    def to_dict(self) -> dict[str, float | int]:
        return {
            "hitRate": round(self.hit_rate, 4),
            "totalEntries": self.total_entries,
            "totalSize": self.total_size,
            "averageAge": round(self.average_age, 3),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
        }


class CacheStore(Protocol):
    """Key/value store with per-entry TTL."""

    def get(self, key: str) -> Any:
        """Return the cached value or ``MISS``."""

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

    def delete(self, key: str) -> bool:
        """Remove ``key``; return whether it was present."""

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``; return how many were removed."""

    def clear(self) -> None:
        """Drop every entry."""

    def stats(self) -> CacheStats:
        """Return cumulative statistics."""


class _EvictionCountingCache(TLRUCache):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.evictions = 0

    def popitem(self):  # type: ignore[override]
        item = super().popitem()
        self.evictions += 1
        return item


def _entry_ttu(_key: str, entry: CacheEntry, now: float) -> float:
    return now + entry.ttl


def _entry_size(entry: CacheEntry) -> int:
    return entry.size_bytes


def estimate_size(value: Any) -> int:
    try:
        return len(pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
    except (pickle.PicklingError, TypeError, AttributeError):
        return len(repr(value).encode("utf-8"))


class TTLCacheStore:
    """In-process cache: per-entry TTL, LRU eviction under a byte and entry cap."""

    def __init__(
        self,
        *,
        max_bytes: int = 150 * 1024 * 1024,
        max_entries: int = 5000,
        default_ttl: float = 20 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._cache = _EvictionCountingCache(
            maxsize=max_bytes,
            ttu=_entry_ttu,
            timer=clock,
            getsizeof=_entry_size,
        )
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._logger = get_logger("cache")

    def get(self, key: str) -> Any:
        with self._lock:
            self._expire_locked()
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                PipelineMetrics.observe_cache(False)
                return MISS
            self._hits += 1
        PipelineMetrics.observe_cache(True)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        effective_ttl = self._default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            return
        size = estimate_size(value)
        if size > self._max_bytes:
            self._logger.warning("cache.skip_oversized", key=key, size_bytes=size, max_bytes=self._max_bytes)
            return
        with self._lock:
            entry = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=effective_ttl, size_bytes=size)
            self._cache[key] = entry
            while len(self._cache) > self._max_entries:
                self._cache.popitem()

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
            for key in doomed:
                self._cache.pop(key, None)
        if doomed:
            self._logger.info("cache.invalidate", prefix=prefix, removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            self._expire_locked()
            now = self._clock()
            entries = list(self._cache.values())
            total = self._hits + self._misses
            ages = [now - entry.created_at for entry in entries]
            return CacheStats(
                hit_rate=self._hits / total if total else 0.0,
                total_entries=len(entries),
                total_size=int(self._cache.currsize),
                average_age=sum(ages) / len(ages) if ages else 0.0,
                hits=self._hits,
                misses=self._misses,
                evictions=self._cache.evictions,
                expirations=self._expirations,
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._expirations = 0
            self._cache.evictions = 0

    def _expire_locked(self) -> None:
        before = len(self._cache)
        self._cache.expire()
        self._expirations += before - len(self._cache)


async def get_or_set(
    cache: CacheStore,
    key: str,
    factory: Callable[[], Awaitable[T]],
    *,
    ttl: float | None = None,
) -> tuple[T, bool]:
    """Return ``(value, hit)``, awaiting ``factory`` and caching its result on a miss."""

    cached = cache.get(key)
    if cached is not MISS:
        return cached, True
    value = await factory()
    cache.set(key, value, ttl)
    return value, False


__all__ = [
    "MISS",
    "CacheStats",
    "CacheStore",
    "TTLCacheStore",
    "estimate_size",
    "get_or_set",
    "make_cache_key",
    "normalize_query",
]
