"""
Shared state synchronizer: ordered, path-addressed state with subscriptions.

Manifesto:
    Several callers, several tabs and several remote peers write the same
    paths. Arrival order means nothing under at-least-once delivery, so
    every path carries a sequence and only a strictly newer update is
    applied. Everything else (duplicates, retransmits, reorders) is dropped
    silently.

    - **Ordered per path:** ``(sequence, timestamp)`` must strictly increase
    - **Hierarchical fan-out:** ``user.profile.name`` notifies ``user.profile`` and ``user``
    - **Local-first:** local writes apply before the network acknowledges them
    - **Convergent:** after a reconnect, a full snapshot replaces missed increments

Optimistic writes:
    ``publish_local_update`` is optimistic and NOT transactional. The update
    is applied locally, mirrored into the cache and only then sent. If the
    send fails the local value stays; the update is queued and re-sent after
    the next resync, and the authoritative snapshot settles any conflict.
    This is at-least-once, eventually-consistent delivery. Do not turn it
    into a blocking two-phase commit.

    A local write is recorded as ``(sequence, PROVISIONAL_TIMESTAMP)``, below
    every server timestamp. When two writers collide on a sequence, the
    server's stamped copy decides: the remote side sends the committed
    update back to the writer, whether its own write won or lost.

Architecture:
    ::

        ConnectionManager ──apply_remote_update──► SharedStateSynchronizer
                          ◄──send / request_resync──   │
                                                       ├─ _last[path]   (sequence, timestamp)
                                                       ├─ _values[path]
                                                       ├─ TieredCache   (durable mirror)
                                                       └─ subscribers   (exact + ancestors)

Tags:
    sync, state, ordering, subscriptions, resync, optimistic, syncspine
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from syncspine.cache.tiered import TieredCache
from syncspine.core.errors import DisposedError, StaleUpdateDiscarded
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock, to_millis
from syncspine.sync.models import (
    WILDCARD,
    PathState,
    SnapshotEntry,
    StateUpdate,
    SubscriberCallback,
    Subscription,
    SyncMode,
    Transport,
    path_matches,
    validate_path,
)

logger = get_logger(__name__)

ModeListener = Callable[[SyncMode], None]

# Ordering timestamp of a local write until the server-stamped copy comes back.
# Any server timestamp for the same sequence outranks it.
PROVISIONAL_TIMESTAMP = -1


@dataclass
class SyncStats:
    """Counters for monitoring."""

    applied: int = 0
    confirmed: int = 0
    discarded: int = 0
    published: int = 0
    queued: int = 0
    resyncs: int = 0
    subscriber_errors: int = 0


class SharedStateSynchronizer:
    """Owns the authoritative per-path sequence counters and local state.

    Attributes:
        origin_id: Stamped on every locally published update.
        key_prefix: Prefix of the cache keys mirroring each path.
        ttl_seconds: TTL of mirrored entries (``None`` → cache default).
    """

    def __init__(
        self,
        cache: TieredCache,
        *,
        origin_id: str,
        key_prefix: str = "state",
        ttl_seconds: float | None = None,
        clock: Clock | None = None,
    ):
        self._cache = cache
        self.origin_id = origin_id
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._clock = clock or SystemClock()
        self._transport: Transport | None = None

        self._last: dict[str, tuple[int, int]] = {}
        self._local_seq: dict[str, int] = {}
        self._values: dict[str, Any] = {}
        self._states: dict[str, PathState] = {}
        self._subscriptions: list[Subscription] = []
        self._pending: dict[str, StateUpdate] = {}
        self._mode = SyncMode.STALE
        self._mode_listeners: list[ModeListener] = []
        self._callback_tasks: set[asyncio.Task[Any]] = set()
        self._disposed = False
        self.stats = SyncStats()

    def attach_transport(self, transport: Transport) -> None:
        """Wire the outbound side (normally the connection manager)."""
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def subscribe(self, path: str, callback: SubscriberCallback) -> Callable[[], None]:
        """Listen to ``path`` and every descendant of it.

        Callbacks receive the applied :class:`StateUpdate`; coroutine
        callbacks are scheduled as tasks. Returns a function that removes
        exactly this listener; calling it again does nothing.
        """
        self._check_alive()
        subscription = Subscription(path=validate_path(path), callback=callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def subscribed_paths(self) -> list[str]:
        """Distinct subscribed paths, in subscription order."""
        return list(dict.fromkeys(sub.path for sub in self._subscriptions))

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    def apply_remote_update(self, update: StateUpdate) -> bool:
        """Apply ``update`` if it is newer than what the path has seen.

        Returns ``True`` and notifies subscribers of the path and its
        ancestors when ``(sequence, timestamp)`` is strictly greater than the
        recorded pair. Otherwise the update is discarded and ``False`` is
        returned; discarding is normal under at-least-once delivery.
        """
        self._check_alive()
        validate_path(update.path)
        return self._apply(update)

    def apply_snapshot(self, entries: list[SnapshotEntry]) -> int:
        """Apply every snapshot entry through the ordering check. Returns the applied count."""
        self._check_alive()
        applied = 0
        for entry in entries:
            applied += self._apply(entry.to_update())
        return applied

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def publish_local_update(self, path: str, value: Any) -> StateUpdate:
        """Write ``value`` to ``path`` locally first, then send it.

        Optimistic and non-transactional: the local apply is never rolled
        back. When the synchronizer is STALE, or the send fails, the update
        is queued and sent after the next resync.
        """
        self._check_alive()
        validate_path(path)
        if path == WILDCARD:
            raise ValueError("Cannot publish to the wildcard path")

        last_sequence = self._last.get(path, (0, 0))[0]
        sequence = max(self._local_seq.get(path, 0), last_sequence) + 1
        self._local_seq[path] = sequence

        update = StateUpdate(
            path=path,
            value=value,
            sequence=sequence,
            origin_id=self.origin_id,
            timestamp=to_millis(self._clock.now()),
        )
        self._apply(update, provisional=True)
        self.stats.published += 1

        if not await self._send(update):
            self._queue(update)
        return update

    async def flush_pending(self) -> int:
        """Send queued local updates. Returns how many were sent.

        Updates already superseded by a newer applied update are dropped.
        """
        self._check_alive()
        sent = 0
        for path, update in list(self._pending.items()):
            if self._last.get(path, (0, 0)) > (update.sequence, PROVISIONAL_TIMESTAMP):
                self._pending.pop(path, None)
                continue
            if not await self._send(update):
                break
            if self._pending.get(path) is update:
                del self._pending[path]
            sent += 1
        return sent

    async def resync_all(self) -> None:
        """Recover from a disconnect by applying a full snapshot.

        Missed increments are not replayed by the remote side, so the
        snapshot of every subscribed path is fetched and applied through the
        normal ordering check. Snapshot sequences are at least as new as
        anything cached locally, so state converges regardless of how many
        updates were missed. Afterwards the mode is LIVE and queued local
        writes are flushed.

        Raises:
            NetworkError: The snapshot could not be fetched; mode stays STALE.
        """
        self._check_alive()
        paths = self.subscribed_paths()
        applied = 0
        if paths and self._transport is not None:
            entries = await self._transport.request_resync(paths)
            applied = self.apply_snapshot(entries)

        self.stats.resyncs += 1
        logger.info("resync_complete", paths=len(paths), applied=applied)
        self.set_mode(SyncMode.LIVE)
        await self.flush_pending()

    # ------------------------------------------------------------------ #
    # Reads & mode
    # ------------------------------------------------------------------ #

    def get(self, path: str) -> Any | None:
        """Last-known value of ``path``: in memory, else the cache mirror."""
        self._check_alive()
        if path in self._values:
            return self._values[path]
        record = self._cache.get(self._cache_key(path))
        if isinstance(record, dict):
            return record.get("value")
        return None

    def path_state(self, path: str) -> PathState:
        self._check_alive()
        return self._states.get(path, PathState.UNKNOWN)

    def last_sequence(self, path: str) -> int | None:
        self._check_alive()
        last = self._last.get(path)
        return last[0] if last is not None else None

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def set_mode(self, mode: SyncMode) -> None:
        """Switch LIVE/STALE and notify mode listeners on change."""
        self._check_alive()
        if mode is self._mode:
            return
        self._mode = mode
        logger.info("sync_mode_changed", mode=mode.value)
        for listener in list(self._mode_listeners):
            try:
                listener(mode)
            except Exception as exc:
                logger.warning("mode_listener_error", error=str(exc))

    def on_mode_change(self, listener: ModeListener) -> Callable[[], None]:
        """Register a LIVE/STALE listener. Returns an idempotent remover."""
        self._check_alive()
        self._mode_listeners.append(listener)

        def remove() -> None:
            if listener in self._mode_listeners:
                self._mode_listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def dispose(self) -> None:
        """Drop subscriptions and cancel pending callback tasks."""
        self._disposed = True
        for task in list(self._callback_tasks):
            task.cancel()
        self._callback_tasks.clear()
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()
        self._mode_listeners.clear()
        self._pending.clear()

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _apply(self, update: StateUpdate, *, provisional: bool = False) -> bool:
        key = (update.sequence, PROVISIONAL_TIMESTAMP) if provisional else update.ordering_key
        last = self._last.get(update.path)
        if last is not None and key <= last:
            self.stats.discarded += 1
            discarded = StaleUpdateDiscarded("Update not newer than last applied").with_context(
                component="sync", path=update.path, origin_id=update.origin_id,
                sequence=update.sequence, timestamp=update.timestamp,
                last_sequence=last[0], last_timestamp=last[1],
            )
            logger.debug("stale_update_discarded", **discarded.context.to_dict())
            return False

        # The server echoing our own write back only settles its ordering key.
        confirms_own_write = (
            not provisional
            and last == (update.sequence, PROVISIONAL_TIMESTAMP)
            and update.origin_id == self.origin_id
            and self._values.get(update.path) == update.value
        )

        self._last[update.path] = key
        self._values[update.path] = update.value
        self._states[update.path] = PathState.SYNCED
        self._cache.set(self._cache_key(update.path), update.to_record(), ttl_seconds=self.ttl_seconds)
        if confirms_own_write:
            self.stats.confirmed += 1
            logger.debug(
                "local_update_confirmed", path=update.path, sequence=update.sequence,
                timestamp=update.timestamp,
            )
            return True

        self.stats.applied += 1
        self._notify(update)
        return True

    def _notify(self, update: StateUpdate) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active or not path_matches(subscription.path, update.path):
                continue
            try:
                result = subscription.callback(update)
            except Exception as exc:
                self.stats.subscriber_errors += 1
                logger.warning(
                    "subscriber_error", path=update.path, subscription=subscription.path,
                    error=str(exc),
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task[Any]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.stats.subscriber_errors += 1
            logger.warning("subscriber_error", error=str(exc))

    async def _send(self, update: StateUpdate) -> bool:
        transport = self._transport
        if self._mode is not SyncMode.LIVE or transport is None or not transport.is_connected:
            return False
        try:
            return await transport.send(update)
        except Exception as exc:
            logger.warning("publish_send_failed", path=update.path, error=str(exc))
            return False

    def _queue(self, update: StateUpdate) -> None:
        self._pending[update.path] = update
        self.stats.queued += 1
        logger.debug("publish_queued", path=update.path, sequence=update.sequence)

    def _cache_key(self, path: str) -> str:
        return f"{self.key_prefix}:{path}"

    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedError("SharedStateSynchronizer has been disposed").with_context(
                component="sync"
            )


__all__ = ["PROVISIONAL_TIMESTAMP", "SharedStateSynchronizer", "SyncStats"]
