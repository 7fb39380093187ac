"""Tiered cache: memory → persistent → fallback, with TTL expiry.

Modules
-------
backends    StorageBackend protocol + MemoryStore / SqliteStore / RedisStore
tiered      TieredCache, CacheEntry, CacheTier
"""

from syncspine.cache.backends import MemoryStore, RedisStore, SqliteStore, StorageBackend
from syncspine.cache.tiered import CacheEntry, CacheStats, CacheTier, TieredCache

__all__ = [
    "StorageBackend",
    "MemoryStore",
    "SqliteStore",
    "RedisStore",
    "CacheTier",
    "CacheEntry",
    "CacheStats",
    "TieredCache",
]
