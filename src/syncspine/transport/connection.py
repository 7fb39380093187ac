"""
Resilient connection manager for the real-time channel.

Manifesto:
    Networks drop. The channel is reopened on its own, with a delay that
    grows on every consecutive failure but never past a fixed cap, and the
    first thing a new connection does is resynchronize state so nothing
    missed while offline stays missed.

    - **Bounded backoff:** exponential from a base, capped, reset on success
    - **Fresh credentials:** a token is requested before every (re)connect
    - **Resync on connect:** ``SharedStateSynchronizer.resync_all()`` after each open
    - **Never crashes on input:** malformed messages are logged and dropped
    - **No send queue:** durability across outages belongs to the synchronizer

States::

    DISCONNECTED ──connect()──► CONNECTING ──open ok──► CONNECTED
          ▲                         │                      │
          │                    open failed           channel lost
          │                         ▼                      ▼
          └──attempts exhausted── RECONNECTING ◄───────────┘
                                    │  (after backoff delay)
                                    └──────► CONNECTING

Channel contract (external collaborator)::

    channel = await channel_factory(bearer_token)
    await channel.send(raw_text)
    async for raw_text in channel: ...     # ends or raises when the channel drops
    await channel.close()

Tags:
    connection, reconnect, backoff, websocket, resync, syncspine
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from syncspine.auth.tokens import TokenLifecycleManager
from syncspine.core.backoff import BackoffTracker, ExponentialBackoff, RetryStrategy
from syncspine.core.errors import (
    DisposedError,
    MalformedMessageError,
    NetworkError,
    TokenUnavailableError,
)
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock
from syncspine.sync.models import SnapshotEntry, StateUpdate, SyncMode
from syncspine.sync.synchronizer import SharedStateSynchronizer
from syncspine.transport.messages import (
    ResyncRequest,
    ResyncSnapshot,
    UpdateMessage,
    decode,
    encode,
    encode_update,
)

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of the real-time channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@runtime_checkable
class Channel(Protocol):
    """An open real-time channel carrying JSON text frames."""

    async def send(self, raw: str) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[str]:
        ...

    async def close(self) -> None:
        ...


ChannelFactory = Callable[[str], Awaitable[Channel]]
StateListener = Callable[[ConnectionState, ConnectionState], None]


@dataclass
class ConnectionStats:
    """Counters for monitoring."""

    connect_attempts: int = 0
    successful_connects: int = 0
    failed_connects: int = 0
    connections_lost: int = 0
    messages_received: int = 0
    messages_dropped: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    last_error: str | None = None
    last_connected_at: float | None = None


class ConnectionManager:
    """Owns the channel handle; reconnects with capped exponential backoff.

    The manager registers itself as the synchronizer's transport, so
    ``publish_local_update`` reaches :meth:`send` and ``resync_all`` reaches
    :meth:`request_resync`.

    Attributes:
        scope: Token scope requested before each connect attempt.
        resync_timeout_seconds: How long :meth:`request_resync` waits for a snapshot.
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        tokens: TokenLifecycleManager,
        synchronizer: SharedStateSynchronizer,
        *,
        scope: str = "default",
        backoff: RetryStrategy | None = None,
        resync_timeout_seconds: float = 10.0,
        clock: Clock | None = None,
    ):
        self._channel_factory = channel_factory
        self._tokens = tokens
        self._synchronizer = synchronizer
        self.scope = scope
        self.resync_timeout_seconds = resync_timeout_seconds
        self._clock = clock or SystemClock()
        self._backoff = BackoffTracker(backoff or ExponentialBackoff(base_delay=1.0, max_delay=30.0))

        self._state = ConnectionState.DISCONNECTED
        self._channel: Channel | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._resync_future: asyncio.Future[list[SnapshotEntry]] | None = None
        self._aux_tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[StateListener] = []
        self._attempting = False
        self._disposed = False
        self.stats = ConnectionStats()

        synchronizer.attach_transport(self)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._channel is not None

    @property
    def backoff_history(self) -> list[float]:
        """Reconnect delays chosen so far (most recent last)."""
        return list(self._backoff.history)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(old, new)``. Returns an idempotent remover."""
        self._check_alive()
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------ #
    # Connect / reconnect
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Open the channel and resync; schedule a reconnect on failure.

        A no-op while already connecting or connected. Network failures are
        recovered by the reconnect schedule and do not raise.

        Raises:
            TokenUnavailableError: No credential could be obtained (a
                reconnect is still scheduled).
            DisposedError: The manager has been disposed.
        """
        self._check_alive()
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return

        reconnect = self._reconnect_task
        if reconnect is not None and reconnect is not asyncio.current_task():
            reconnect.cancel()
            self._reconnect_task = None

        error = await self._attempt()
        if error is None:
            return
        self._schedule_reconnect()
        if isinstance(error, TokenUnavailableError):
            raise error

    async def _attempt(self) -> Exception | None:
        """One connect attempt. Returns the failure, or ``None`` on success."""
        self._attempting = True
        try:
            return await self._open_and_resync()
        finally:
            self._attempting = False

    async def _open_and_resync(self) -> Exception | None:
        self._set_state(ConnectionState.CONNECTING)
        self.stats.connect_attempts += 1

        try:
            token = await self._tokens.get_token(self.scope)
            channel = await self._channel_factory(token.value)
        except DisposedError:
            raise
        except TokenUnavailableError as exc:
            self._record_failure(exc)
            return exc
        except Exception as exc:
            error = NetworkError("Failed to open channel", cause=exc).with_context(
                component="connection", scope=self.scope
            )
            self._record_failure(error)
            return error

        if self._disposed:
            self._spawn(self._close_quietly(channel))
            raise DisposedError("ConnectionManager disposed while connecting")

        self._channel = channel
        self.stats.successful_connects += 1
        self.stats.last_connected_at = self._clock.now()
        self._set_state(ConnectionState.CONNECTED)
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(channel))

        try:
            await self._synchronizer.resync_all()
        except DisposedError:
            raise
        except Exception as exc:
            logger.warning("resync_failed", error=str(exc))
            self._teardown_channel(channel)
            self._record_failure(exc)
            return exc

        # A connection only counts as recovered once its state is resynced.
        self._backoff.reset()
        return None

    def _schedule_reconnect(self) -> None:
        if self._disposed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        if not self._backoff.should_retry():
            logger.error("reconnect_exhausted", attempts=self._backoff.attempt)
            self._set_state(ConnectionState.DISCONNECTED)
            return

        delay = self._backoff.next_delay()
        self._set_state(ConnectionState.RECONNECTING)
        logger.info("reconnect_scheduled", delay=delay, attempt=self._backoff.attempt)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay)
        )

    async def _reconnect_after(self, delay: float) -> None:
        await self._clock.sleep(delay)
        self._reconnect_task = None
        if self._disposed:
            return
        try:
            error = await self._attempt()
        except DisposedError:
            return
        if error is not None:
            self._schedule_reconnect()

    def _record_failure(self, error: Exception) -> None:
        self.stats.failed_connects += 1
        self.stats.last_error = str(error)
        logger.warning("connect_failed", error=str(error), error_type=type(error).__name__)

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    async def _read_loop(self, channel: Channel) -> None:
        error: Exception
        try:
            async for raw in channel:
                self.on_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = NetworkError("Channel receive failed", cause=exc)
        else:
            error = NetworkError("Channel closed by peer")

        if channel is self._channel and not self._disposed:
            self._connection_lost(channel, error)

    def on_message(self, raw: str | bytes) -> None:
        """Handle one inbound frame. Malformed or unusable frames are dropped."""
        self._check_alive()
        self.stats.messages_received += 1
        try:
            message = decode(raw)
        except MalformedMessageError as exc:
            self.stats.messages_dropped += 1
            logger.warning("message_dropped", reason="malformed", **exc.to_dict())
            return

        try:
            if isinstance(message, UpdateMessage):
                self._synchronizer.apply_remote_update(message.to_update())
            elif isinstance(message, ResyncSnapshot):
                self._handle_snapshot(message.to_entries())
            else:
                self.stats.messages_dropped += 1
                logger.debug("message_dropped", reason="unexpected_type", type=message.type)
        except Exception as exc:
            self.stats.messages_dropped += 1
            logger.warning("message_dropped", reason="handler_error", error=str(exc))

    def _handle_snapshot(self, entries: list[SnapshotEntry]) -> None:
        future = self._resync_future
        if future is not None and not future.done():
            future.set_result(entries)
        else:
            self._synchronizer.apply_snapshot(entries)

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def send(self, update: StateUpdate) -> bool:
        """Send ``update`` if connected.

        Returns ``False`` without queueing when not connected or when the
        send fails; the synchronizer keeps unsent updates and the next
        resync repairs any gap.
        """
        self._check_alive()
        channel = self._channel
        if not self.is_connected or channel is None:
            logger.debug("send_skipped", path=update.path, state=self._state.value)
            return False

        try:
            await channel.send(encode_update(update))
        except Exception as exc:
            self.stats.send_failures += 1
            logger.warning("send_failed", path=update.path, error=str(exc))
            if channel is self._channel:
                self._connection_lost(channel, NetworkError("Channel send failed", cause=exc))
            return False

        self.stats.messages_sent += 1
        return True

    async def request_resync(self, paths: list[str]) -> list[SnapshotEntry]:
        """Ask the remote side for a snapshot of ``paths`` and wait for it.

        Raises:
            NetworkError: Not connected, the request could not be sent, the
                channel dropped, or no snapshot arrived in time.
        """
        self._check_alive()
        channel = self._channel
        if channel is None:
            raise NetworkError("Cannot resync while disconnected")

        previous = self._resync_future
        if previous is not None and not previous.done():
            previous.cancel()
        future: asyncio.Future[list[SnapshotEntry]] = asyncio.get_running_loop().create_future()
        self._resync_future = future

        try:
            try:
                await channel.send(encode(ResyncRequest(paths=paths)))
            except Exception as exc:
                raise NetworkError("Failed to send resync request", cause=exc) from exc
            timer = asyncio.get_running_loop().create_task(
                self._clock.sleep(self.resync_timeout_seconds)
            )
            try:
                await asyncio.wait({future, timer}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                timer.cancel()
            if not future.done():
                raise NetworkError(
                    "Timed out waiting for resync snapshot",
                    retry_after=self.resync_timeout_seconds,
                ).with_context(component="connection", scope=self.scope)
            return future.result()
        finally:
            if not future.done():
                future.cancel()
            if self._resync_future is future:
                self._resync_future = None

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    def _connection_lost(self, channel: Channel, error: Exception) -> None:
        self.stats.connections_lost += 1
        logger.warning("connection_lost", error=str(error))
        self._teardown_channel(channel)
        if self._attempting:
            # The running attempt sees the failed resync and reschedules.
            return
        self._record_failure(error)
        self._schedule_reconnect()

    def _teardown_channel(self, channel: Channel) -> None:
        if self._channel is channel:
            self._channel = None

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()

        future = self._resync_future
        if future is not None and not future.done():
            future.set_exception(NetworkError("Channel lost during resync"))

        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.RECONNECTING)
        self._spawn(self._close_quietly(channel))

    def dispose(self) -> None:
        """Close the channel and cancel reconnects. Safe from any state."""
        if self._disposed:
            return
        self._disposed = True

        for task in (self._reconnect_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._reconnect_task = None
        self._reader_task = None

        future = self._resync_future
        if future is not None and not future.done():
            future.cancel()
        self._resync_future = None

        channel = self._channel
        self._channel = None
        if channel is not None:
            try:
                self._spawn(self._close_quietly(channel))
            except RuntimeError:
                logger.debug("channel_close_skipped", reason="no running loop")

        self._set_state(ConnectionState.DISCONNECTED)
        self._listeners.clear()

    async def aclose(self) -> None:
        """Dispose and wait for the channel to finish closing."""
        self.dispose()
        if self._aux_tasks:
            await asyncio.gather(*list(self._aux_tasks), return_exceptions=True)

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.info("connection_state_changed", previous=previous.value, state=state.value)

        if state is not ConnectionState.CONNECTED and not self._synchronizer.disposed:
            self._synchronizer.set_mode(SyncMode.STALE)

        for listener in list(self._listeners):
            try:
                listener(previous, state)
            except Exception as exc:
                logger.warning("state_listener_error", error=str(exc))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            raise
        self._aux_tasks.add(task)
        task.add_done_callback(self._aux_tasks.discard)

    async def _close_quietly(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as exc:
            logger.debug("channel_close_failed", error=str(exc))

    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedError("ConnectionManager has been disposed").with_context(
                component="connection"
            )


__all__ = [
    "ConnectionState",
    "Channel",
    "ChannelFactory",
    "StateListener",
    "ConnectionStats",
    "ConnectionManager",
]
