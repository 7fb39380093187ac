"""
SyncClient: the four components wired together from settings.

Factory functions build each tier and component from
:class:`~syncspine.core.settings.SyncSettings`, importing optional backends
(Redis) only when selected. The client gives host applications one object
with the three collaborator-facing surfaces: credentials, publish/subscribe
on paths, and cache reads.

Example::

    async def refresh(scope):
        return await sso.exchange(scope)     # {"token": ..., "expires_at": ...}

    async with SyncClient(SyncSettings(), refresh, channel_factory) as client:
        client.subscribe("call.42", on_call_change)
        await client.publish("call.42.quality", {"mos": 4.1})

Tags:
    client, facade, factory-pattern, composition, syncspine
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from syncspine.auth.tokens import RefreshFn, TokenLifecycleManager
from syncspine.cache.backends import MemoryStore, SqliteStore, StorageBackend
from syncspine.cache.tiered import TieredCache
from syncspine.core.backoff import ExponentialBackoff
from syncspine.core.errors import TokenUnavailableError
from syncspine.core.logging import configure_logging, get_logger
from syncspine.core.settings import SyncSettings
from syncspine.core.timestamps import Clock, SystemClock
from syncspine.sync.models import StateUpdate, SubscriberCallback, SyncMode
from syncspine.sync.synchronizer import SharedStateSynchronizer
from syncspine.transport.connection import ChannelFactory, ConnectionManager, ConnectionState

logger = get_logger(__name__)


# ------------------------------------------------------------------ #
# Factories
# ------------------------------------------------------------------ #


def setup_logging(settings: SyncSettings) -> None:
    """Configure structlog from ``log_level`` and ``json_logs``."""
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    logger.debug("logging_configured", origin_id=settings.origin_id)


def create_persistent_backend(settings: SyncSettings) -> StorageBackend:
    """SQLite file at ``persistent_path``, or an in-memory SQLite database."""
    if settings.persistent_path is None:
        return SqliteStore(":memory:")
    return SqliteStore(settings.persistent_path)


def create_fallback_backend(settings: SyncSettings) -> StorageBackend | None:
    """Redis store at ``fallback_redis_url``, or no fallback tier."""
    if not settings.fallback_redis_url:
        return None
    from syncspine.cache.backends import RedisStore

    return RedisStore(settings.fallback_redis_url)


def create_cache(settings: SyncSettings, *, clock: Clock | None = None) -> TieredCache:
    return TieredCache(
        MemoryStore(max_size=settings.memory_max_size),
        create_persistent_backend(settings),
        create_fallback_backend(settings),
        namespace=settings.cache_namespace,
        default_ttl_seconds=settings.default_ttl_seconds,
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
        clock=clock,
    )


def create_token_manager(
    settings: SyncSettings, refresh: RefreshFn, *, clock: Clock | None = None
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        refresh,
        refresh_skew_seconds=settings.token_refresh_skew_seconds,
        retry_delay_seconds=settings.token_retry_delay_seconds,
        max_refresh_attempts=settings.max_refresh_attempts,
        clock=clock,
    )


def create_reconnect_backoff(settings: SyncSettings) -> ExponentialBackoff:
    return ExponentialBackoff(
        base_delay=settings.reconnect_base_delay_seconds,
        max_delay=settings.reconnect_max_delay_seconds,
        jitter=settings.reconnect_jitter,
        max_retries=settings.max_reconnect_attempts,
    )


# ------------------------------------------------------------------ #
# Client
# ------------------------------------------------------------------ #


class SyncClient:
    """Tiered cache, token manager, synchronizer and connection manager in one object.

    Components are public attributes (``cache``, ``tokens``, ``synchronizer``,
    ``connection``) for hosts that need more than the shortcuts below.
    """

    def __init__(
        self,
        settings: SyncSettings,
        refresh: RefreshFn,
        channel_factory: ChannelFactory,
        *,
        cache: TieredCache | None = None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self._clock = clock or SystemClock()
        self.cache = cache or create_cache(settings, clock=self._clock)
        self.tokens = create_token_manager(settings, refresh, clock=self._clock)
        self.synchronizer = SharedStateSynchronizer(
            self.cache,
            origin_id=settings.origin_id,
            clock=self._clock,
        )
        self.connection = ConnectionManager(
            channel_factory,
            self.tokens,
            self.synchronizer,
            scope=settings.token_scope,
            backoff=create_reconnect_backoff(settings),
            resync_timeout_seconds=settings.resync_timeout_seconds,
            clock=self._clock,
        )
        self._started = False

    async def start(self) -> None:
        """Start the cache sweep and connect.

        A missing credential is logged, not raised: the connection manager
        keeps retrying on its backoff schedule and the client stays STALE.
        """
        if not self._started:
            self.cache.start()
            self._started = True
        try:
            await self.connection.connect()
        except TokenUnavailableError as exc:
            logger.error("initial_connect_without_token", **exc.to_dict())

    # Collaborator surfaces -------------------------------------------------

    async def get_credential(self) -> str:
        return await self.tokens.get_credential(self.settings.token_scope)

    def subscribe(self, path: str, callback: SubscriberCallback) -> Callable[[], None]:
        return self.synchronizer.subscribe(path, callback)

    async def publish(self, path: str, value: Any) -> StateUpdate:
        """Optimistic write; see :meth:`SharedStateSynchronizer.publish_local_update`."""
        return await self.synchronizer.publish_local_update(path, value)

    def get(self, path: str) -> Any | None:
        return self.synchronizer.get(path)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def mode(self) -> SyncMode:
        return self.synchronizer.mode

    # Lifecycle -------------------------------------------------------------

    def dispose(self) -> None:
        """Dispose every component, outermost first."""
        self.connection.dispose()
        self.synchronizer.dispose()
        self.tokens.dispose()
        self.cache.dispose()

    async def aclose(self) -> None:
        await self.connection.aclose()
        self.dispose()

    async def __aenter__(self) -> SyncClient:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


__all__ = [
    "SyncClient",
    "setup_logging",
    "create_cache",
    "create_persistent_backend",
    "create_fallback_backend",
    "create_token_manager",
    "create_reconnect_backoff",
]
