"""
Storage backends for the cache tiers.

Each tier of :class:`~syncspine.cache.tiered.TieredCache` is one
``StorageBackend``. Backends are plain key/value stores with best-effort
durability; the tiered cache stores entry envelopes in them and enforces
TTL itself, so a backend without native expiry is still safe to use.

Architecture:
    ::

        StorageBackend (Protocol)
        ├── MemoryStore  - bounded LRU, single process      (memory tier)
        ├── SqliteStore  - on-disk via sqlite3             (persistent tier)
        └── RedisStore   - Redis, shared across processes  (persistent/fallback tier)

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)
             keys() → list[str]
             clear()

Guardrails:
    ❌ DON'T: Swallow errors inside a backend
    ✅ DO: Let them propagate; the tiered cache decides how to degrade

Tags:
    cache, storage, redis, sqlite, in-memory, ttl, syncspine
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for a single cache tier.

    Keys are strings, values are JSON-serializable. ``ttl_seconds`` is a hint
    for backends with native expiry; callers must not rely on it.
    """

    def get(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` if absent."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store a value."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if absent."""
        ...

    def keys(self) -> list[str]:
        """Return every stored key."""
        ...

    def clear(self) -> None:
        """Remove every key."""
        ...


# ------------------------------------------------------------------ #
# Memory (Tier 1)
# ------------------------------------------------------------------ #


class MemoryStore:
    """Bounded in-memory store with LRU eviction.

    Example:
        store = MemoryStore(max_size=500)
        store.set("state:presence", {"value": "away", "expires_at": None})
    """

    def __init__(self, *, max_size: int = 10_000):
        self._store: OrderedDict[str, Any] = OrderedDict()
        self._max_size = max_size

    def get(self, key: str) -> Any | None:
        if key not in self._store:
            return None
        self._store.move_to_end(key)
        return self._store[key]

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self._max_size:
            self._store.popitem(last=False)
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._store.keys())

    def clear(self) -> None:
        self._store.clear()

    def size(self) -> int:
        """Return current number of stored keys."""
        return len(self._store)


# ------------------------------------------------------------------ #
# SQLite (Tier 2)
# ------------------------------------------------------------------ #


class SqliteStore:
    """Persistent store in a single SQLite table.

    Values are stored as JSON text. Pass ``":memory:"`` for a throwaway
    database (tests, ephemeral hosts).

    Example:
        store = SqliteStore(Path.home() / ".syncspine" / "cache.db")
    """

    _DDL = """
        CREATE TABLE IF NOT EXISTS cache_entries (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at REAL NOT NULL
        )
    """

    def __init__(self, path: str | Path = ":memory:"):
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = str(path)
        self._conn = sqlite3.connect(self._path)
        self._conn.execute(self._DDL)
        self._conn.commit()

    def get(self, key: str) -> Any | None:
        row = self._conn.execute(
            "SELECT value FROM cache_entries WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO cache_entries (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), time.time()),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        self._conn.commit()

    def keys(self) -> list[str]:
        return [row[0] for row in self._conn.execute("SELECT key FROM cache_entries")]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM cache_entries")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()


# ------------------------------------------------------------------ #
# Redis (Tier 2/3) - Optional
# ------------------------------------------------------------------ #


class RedisStore:
    """Redis-backed store.

    Requires ``redis`` package (install via ``pip install syncspine[redis]``).
    Keys are written with ``SETEX`` when a TTL hint is given so Redis can
    reclaim them on its own.

    Example:
        store = RedisStore("redis://localhost:6379/0", prefix="syncspine:")
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "",
        client: Any = None,
    ):
        """Initialize Redis store.

        Args:
            url: Redis connection URL.
            prefix: Prefix applied to every key (scopes ``keys()``/``clear()``).
            client: Pre-built client (tests); ``url`` is ignored when given.

        Raises:
            ImportError: If ``redis`` package not installed.
        """
        if client is None:
            try:
                import redis
            except ImportError as exc:
                msg = (
                    "Redis backend requires 'redis' package. "
                    "Install with: pip install syncspine[redis]"
                )
                raise ImportError(msg) from exc
            client = redis.from_url(url, decode_responses=False)

        self._client = client
        self._prefix = prefix

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._prefix + key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        serialized = json.dumps(value)
        if ttl_seconds:
            self._client.setex(self._prefix + key, max(1, int(ttl_seconds + 0.999)), serialized)
        else:
            self._client.set(self._prefix + key, serialized)

    def delete(self, key: str) -> None:
        self._client.delete(self._prefix + key)

    def keys(self) -> list[str]:
        result = []
        for raw in self._client.scan_iter(match=f"{self._prefix}*"):
            name = raw.decode() if isinstance(raw, bytes) else raw
            result.append(name[len(self._prefix):])
        return result

    def clear(self) -> None:
        """Remove keys under this store's prefix."""
        for key in self.keys():
            self.delete(key)


__all__ = [
    "StorageBackend",
    "MemoryStore",
    "SqliteStore",
    "RedisStore",
]
