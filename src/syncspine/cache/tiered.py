"""
Tiered cache with TTL expiry and silent tier degradation.

Manifesto:
    The synchronization layer has to keep serving last-known state while
    the network is down and while individual storage layers misbehave
    (quota exceeded, disk unavailable, Redis restarting). A single cache
    backend can't give that; a fixed stack of tiers can.

    - **Fixed lookup order:** memory → persistent → fallback
    - **Write-back on read:** a lower-tier hit repopulates every faster tier
    - **Write-through on set:** every tier is attempted, memory alone suffices
    - **TTL everywhere:** expiry is enforced here, not trusted to backends
    - **Never raises on tier faults:** total failure is a cache miss

Architecture:
    ::

        TieredCache
        ├── MEMORY      (MemoryStore)        fastest, least durable
        ├── PERSISTENT  (SqliteStore/Redis)  optional
        └── FALLBACK    (RedisStore/...)     optional

        get(key, skip_memory=False) → value | None
        set(key, value, ttl_seconds=None)
        remove(key)
        cleanup_expired() → evicted count   (periodic, every 60s by default)

Examples:
    >>> cache = TieredCache(MemoryStore(), SqliteStore(":memory:"))
    >>> cache.set("presence", {"status": "away"}, ttl_seconds=30)
    >>> cache.get("presence")
    {'status': 'away'}

Guardrails:
    ❌ DON'T: Write shared state through the cache directly
    ✅ DO: Go through SharedStateSynchronizer, which owns the ordering counters

Tags:
    cache, tiered-cache, ttl, write-back, degradation, syncspine
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from syncspine.cache.backends import MemoryStore, StorageBackend
from syncspine.core.errors import DisposedError, StorageTierError
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock

logger = get_logger(__name__)


class CacheTier(str, Enum):
    """Cache tiers in lookup order."""

    MEMORY = "memory"
    PERSISTENT = "persistent"
    FALLBACK = "fallback"


@dataclass
class CacheEntry:
    """A value together with its expiry and the tier it was read from."""

    key: str
    value: Any
    expires_at: float | None
    tier: CacheTier

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_envelope(self) -> dict[str, Any]:
        return {"value": self.value, "expires_at": self.expires_at}


@dataclass
class CacheStats:
    """Counters for monitoring."""

    hits: dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in CacheTier})
    misses: int = 0
    tier_failures: int = 0
    evicted: int = 0


class TieredCache:
    """Layered key/value cache: memory, then persistent, then fallback.

    Attributes:
        namespace: Prefix for every key written by this cache.
        default_ttl_seconds: TTL used when ``set`` gets none (``None`` → no expiry).
        cleanup_interval_seconds: Period of the sweep started by :meth:`start`.
    """

    def __init__(
        self,
        memory: StorageBackend | None = None,
        persistent: StorageBackend | None = None,
        fallback: StorageBackend | None = None,
        *,
        namespace: str = "",
        default_ttl_seconds: float | None = 3600.0,
        cleanup_interval_seconds: float = 60.0,
        clock: Clock | None = None,
    ):
        tiers: list[tuple[CacheTier, StorageBackend]] = [
            (CacheTier.MEMORY, memory if memory is not None else MemoryStore())
        ]
        if persistent is not None:
            tiers.append((CacheTier.PERSISTENT, persistent))
        if fallback is not None:
            tiers.append((CacheTier.FALLBACK, fallback))

        self._tiers = tiers
        self.namespace = namespace
        self.default_ttl_seconds = default_ttl_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock or SystemClock()
        self._sweep_task: asyncio.Task | None = None
        self._disposed = False
        self.stats = CacheStats()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def tiers(self) -> list[CacheTier]:
        return [tier for tier, _ in self._tiers]

    def get(self, key: str, *, skip_memory: bool = False) -> Any | None:
        """Return the value for ``key``, or ``None`` on a miss.

        Tiers are checked in order; the first live hit is written back into
        every faster tier (keeping its original expiry) before returning.
        """
        entry = self.get_entry(key, skip_memory=skip_memory)
        return entry.value if entry is not None else None

    def get_entry(self, key: str, *, skip_memory: bool = False) -> CacheEntry | None:
        """Like :meth:`get` but returns the full :class:`CacheEntry`."""
        self._check_alive()
        full_key = self._full_key(key)
        now = self._clock.now()

        for index, (tier, backend) in enumerate(self._tiers):
            if skip_memory and tier is CacheTier.MEMORY:
                continue

            ok, raw = self._call(tier, "get", full_key, backend.get, full_key)
            if not ok or raw is None:
                continue

            entry = self._decode(tier, full_key, raw)
            if entry is None:
                continue

            if entry.is_expired(now):
                self._call(tier, "delete", full_key, backend.delete, full_key)
                self.stats.evicted += 1
                continue

            self._write_back(index, full_key, entry, now)
            self.stats.hits[tier.value] += 1
            return CacheEntry(key=key, value=entry.value, expires_at=entry.expires_at, tier=tier)

        self.stats.misses += 1
        return None

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Write ``value`` through every tier.

        Tier failures are logged and skipped. The call never raises for
        storage faults; if every tier fails the write is lost and later
        reads miss.
        """
        self._check_alive()
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")
        full_key = self._full_key(key)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        expires_at = self._clock.now() + ttl if ttl is not None else None
        envelope = {"value": value, "expires_at": expires_at}

        written = 0
        for tier, backend in self._tiers:
            ok, _ = self._call(
                tier, "set", full_key, backend.set, full_key, envelope, ttl_seconds=ttl
            )
            written += ok

        if not written:
            logger.error("cache_write_failed_all_tiers", key=full_key)

    def remove(self, key: str) -> None:
        """Remove ``key`` from every tier. Missing keys are not an error."""
        self._check_alive()
        full_key = self._full_key(key)
        for tier, backend in self._tiers:
            self._call(tier, "delete", full_key, backend.delete, full_key)

    def cleanup_expired(self) -> int:
        """Evict expired entries from every tier.

        Only keys under this cache's namespace are examined. Returns the
        number of entries removed.
        """
        self._check_alive()
        now = self._clock.now()
        prefix = self._full_key("")
        evicted = 0

        for tier, backend in self._tiers:
            ok, keys = self._call(tier, "keys", prefix, backend.keys)
            if not ok:
                continue
            for full_key in keys:
                if not full_key.startswith(prefix):
                    continue
                ok, raw = self._call(tier, "get", full_key, backend.get, full_key)
                if not ok or raw is None:
                    continue
                entry = self._decode(tier, full_key, raw)
                if entry is None or entry.is_expired(now):
                    ok, _ = self._call(tier, "delete", full_key, backend.delete, full_key)
                    evicted += ok

        if evicted:
            self.stats.evicted += evicted
            logger.debug("cache_cleanup", evicted=evicted)
        return evicted

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        self._check_alive()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    def dispose(self) -> None:
        """Cancel the sweep. Later calls raise :class:`DisposedError`."""
        self._disposed = True
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def _sweep_loop(self) -> None:
        while not self._disposed:
            await self._clock.sleep(self.cleanup_interval_seconds)
            if self._disposed:
                return
            self.cleanup_expired()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedError("TieredCache has been disposed").with_context(component="cache")

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _write_back(self, hit_index: int, full_key: str, entry: CacheEntry, now: float) -> None:
        if hit_index == 0:
            return
        remaining = entry.expires_at - now if entry.expires_at is not None else None
        envelope = entry.to_envelope()
        for tier, backend in self._tiers[:hit_index]:
            self._call(
                tier, "set", full_key, backend.set, full_key, envelope, ttl_seconds=remaining
            )

    def _decode(self, tier: CacheTier, full_key: str, raw: Any) -> CacheEntry | None:
        if not isinstance(raw, dict) or "value" not in raw:
            self._report(StorageTierError("Corrupt cache entry"), tier, "decode", full_key)
            return None
        return CacheEntry(
            key=full_key,
            value=raw["value"],
            expires_at=raw.get("expires_at"),
            tier=tier,
        )

    def _call(
        self,
        tier: CacheTier,
        op: str,
        full_key: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> tuple[bool, Any]:
        try:
            return True, fn(*args, **kwargs)
        except Exception as exc:
            self._report(StorageTierError(str(exc), cause=exc), tier, op, full_key)
            return False, None

    def _report(self, error: StorageTierError, tier: CacheTier, op: str, full_key: str) -> None:
        self.stats.tier_failures += 1
        error.with_context(component="cache", tier=tier.value, key=full_key, op=op)
        logger.warning("cache_tier_failure", **error.to_dict())


__all__ = ["CacheTier", "CacheEntry", "CacheStats", "TieredCache"]
