"""Caching components."""

from .service import MISS, CacheStats, CacheStore, TTLCacheStore, get_or_set, make_cache_key, normalize_query

__all__ = [
    "MISS",
    "CacheStats",
    "CacheStore",
    "TTLCacheStore",
    "get_or_set",
    "make_cache_key",
    "normalize_query",
]
