"""
In-process hub acting as the authoritative remote side.

Manifesto:
    Single-process hosts and test suites need the remote half of the
    protocol without running a server: something that keeps the
    authoritative state, relays updates between clients, answers resync
    requests, and can be told to go down.

``InMemoryHub.connect`` is a :data:`~syncspine.transport.connection.ChannelFactory`.
The hub stamps relayed updates with its own clock, so colliding sequences
are broken by server time rather than by client clocks. Writers get the
committed update back, accepted or not.

Example::

    hub = InMemoryHub()
    manager = ConnectionManager(hub.connect, tokens, synchronizer)
    await manager.connect()

    hub.publish("presence.alice", "away")   # another peer writes
    hub.drop_all()                          # simulate an outage
    hub.accepting = False                   # refuse reconnects

Tags:
    transport, in-memory, testing, single-node, syncspine
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from syncspine.core.errors import MalformedMessageError
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock, to_millis
from syncspine.sync.models import SnapshotEntry, StateUpdate, path_matches
from syncspine.transport.messages import (
    ResyncRequest,
    ResyncSnapshot,
    UpdateMessage,
    decode,
    encode,
    encode_update,
)

logger = get_logger(__name__)

_CLOSED = object()


class InMemoryChannel:
    """One client's end of a hub connection."""

    def __init__(self, hub: InMemoryHub, token: str):
        self._hub = hub
        self.token = token
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self.sent: list[str] = []

    async def send(self, raw: str) -> None:
        if self.closed:
            raise ConnectionError("channel is closed")
        self.sent.append(raw)
        self._hub._receive(self, raw)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self._shutdown(None)

    def deliver(self, raw: str) -> None:
        """Push a raw frame to the client (tests use this for malformed input)."""
        if not self.closed:
            self._inbox.put_nowait(raw)

    def _shutdown(self, error: Exception | None) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub._detach(self)
        self._inbox.put_nowait(error if error is not None else _CLOSED)


class InMemoryHub:
    """Authoritative state plus a relay between connected channels.

    Attributes:
        accepting: When ``False`` every connect attempt is refused.
        authorize: Optional token check; a ``False`` result refuses the connect.
        restamp: Replace client timestamps with hub time on receipt.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        authorize: Callable[[str], bool] | None = None,
        restamp: bool = True,
    ):
        self._clock = clock or SystemClock()
        self.authorize = authorize
        self.restamp = restamp
        self.accepting = True
        self._fail_next = 0
        self._state: dict[str, SnapshotEntry] = {}
        self._channels: list[InMemoryChannel] = []
        self.connect_attempts = 0
        self.resync_requests: list[list[str]] = []

    # ------------------------------------------------------------------ #
    # Channel factory
    # ------------------------------------------------------------------ #

    async def connect(self, token: str) -> InMemoryChannel:
        self.connect_attempts += 1
        if not self.accepting:
            raise ConnectionRefusedError("hub is not accepting connections")
        if self._fail_next > 0:
            self._fail_next -= 1
            raise ConnectionRefusedError("simulated connect failure")
        if self.authorize is not None and not self.authorize(token):
            raise PermissionError("token rejected")

        channel = InMemoryChannel(self, token)
        self._channels.append(channel)
        return channel

    def fail_next(self, count: int) -> None:
        """Refuse the next ``count`` connect attempts."""
        self._fail_next = count

    # ------------------------------------------------------------------ #
    # Authoritative state
    # ------------------------------------------------------------------ #

    def publish(self, path: str, value: Any, *, origin_id: str = "hub") -> StateUpdate:
        """Write ``path`` as another peer would and relay it to every client."""
        current = self._state.get(path)
        update = StateUpdate(
            path=path,
            value=value,
            sequence=(current.sequence if current else 0) + 1,
            origin_id=origin_id,
            timestamp=to_millis(self._clock.now()),
        )
        self._commit(update, sender=None)
        return update

    def snapshot(self, path: str) -> SnapshotEntry | None:
        return self._state.get(path)

    def values(self) -> dict[str, Any]:
        return {path: entry.value for path, entry in self._state.items()}

    @property
    def channels(self) -> list[InMemoryChannel]:
        return list(self._channels)

    def drop_all(self, error: Exception | None = None) -> None:
        """Cut every connection, as a network outage would."""
        for channel in list(self._channels):
            channel._shutdown(error or ConnectionResetError("connection reset by hub"))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _receive(self, channel: InMemoryChannel, raw: str) -> None:
        try:
            message = decode(raw)
        except MalformedMessageError as exc:
            logger.warning("hub_message_dropped", **exc.to_dict())
            return

        if isinstance(message, UpdateMessage):
            update = message.to_update()
            if self.restamp:
                update = StateUpdate(
                    path=update.path,
                    value=update.value,
                    sequence=update.sequence,
                    origin_id=update.origin_id,
                    timestamp=to_millis(self._clock.now()),
                )
            self._commit(update, sender=channel)
        elif isinstance(message, ResyncRequest):
            self.resync_requests.append(list(message.paths))
            entries = [
                entry
                for path, entry in sorted(self._state.items())
                if any(path_matches(requested, path) for requested in message.paths)
            ]
            channel.deliver(encode(ResyncSnapshot.from_entries(entries)))

    def _commit(self, update: StateUpdate, sender: InMemoryChannel | None) -> None:
        """Store ``update`` if newer and relay the committed state.

        Every connected channel, the sender included, receives the committed
        update, so the writer learns the server timestamp of its own write.
        A rejected write is answered with the current committed update, to
        the sender only.
        """
        current = self._state.get(update.path)
        if current is not None and (update.sequence, update.timestamp) <= (
            current.sequence,
            current.timestamp,
        ):
            logger.debug(
                "hub_update_rejected", path=update.path, sequence=update.sequence,
                committed_sequence=current.sequence,
            )
            if sender is not None:
                sender.deliver(encode_update(current.to_update()))
            return

        self._state[update.path] = SnapshotEntry(
            path=update.path,
            value=update.value,
            sequence=update.sequence,
            timestamp=update.timestamp,
            origin_id=update.origin_id,
        )
        raw = encode_update(update)
        for channel in list(self._channels):
            channel.deliver(raw)

    def _detach(self, channel: InMemoryChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)


__all__ = ["InMemoryChannel", "InMemoryHub"]
