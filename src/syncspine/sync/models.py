"""Data model for shared state synchronization.

StateUpdate     one ordered write to a dotted path
SnapshotEntry   authoritative value of a path, as returned by a resync
PathState       UNKNOWN → SYNCED, never regresses
SyncMode        LIVE (connected) / STALE (disconnected, serving last-known values)
Transport       outbound side the synchronizer talks to (the connection manager)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

WILDCARD = "*"


class PathState(str, Enum):
    """Per-path synchronization state."""

    UNKNOWN = "unknown"
    SYNCED = "synced"


class SyncMode(str, Enum):
    """Synchronizer-wide mode, shown to users instead of transient errors."""

    LIVE = "live"
    STALE = "stale"


@dataclass(frozen=True)
class StateUpdate:
    """An ordered write to ``path``.

    Ordering is decided by :attr:`ordering_key`: the higher sequence wins,
    and on an exact sequence collision the higher timestamp wins.

    Attributes:
        path: Dotted path (``call.42.quality``)
        value: JSON-serializable value
        sequence: Monotonic per origin and path
        origin_id: Client that produced the update
        timestamp: Epoch milliseconds, server-assigned once relayed
    """

    path: str
    value: Any
    sequence: int
    origin_id: str
    timestamp: int = 0

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.sequence, self.timestamp)

    def to_record(self) -> dict[str, Any]:
        """Form stored in the cache mirror."""
        return {
            "path": self.path,
            "value": self.value,
            "sequence": self.sequence,
            "origin_id": self.origin_id,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SnapshotEntry:
    """Authoritative state of one path at resync time."""

    path: str
    value: Any
    sequence: int
    timestamp: int = 0
    origin_id: str | None = None

    def to_update(self) -> StateUpdate:
        return StateUpdate(
            path=self.path,
            value=self.value,
            sequence=self.sequence,
            origin_id=self.origin_id or "snapshot",
            timestamp=self.timestamp,
        )


SubscriberCallback = Callable[[StateUpdate], Awaitable[None] | None]


@dataclass(eq=False)
class Subscription:
    """A listener on ``path`` and every descendant of it."""

    path: str
    callback: SubscriberCallback
    active: bool = field(default=True)


@runtime_checkable
class Transport(Protocol):
    """Outbound side of the synchronizer."""

    @property
    def is_connected(self) -> bool:
        ...

    async def send(self, update: StateUpdate) -> bool:
        """Send an update. Returns ``False`` if it was not sent."""
        ...

    async def request_resync(self, paths: list[str]) -> list[SnapshotEntry]:
        """Fetch the authoritative snapshot for ``paths`` and their descendants."""
        ...


def validate_path(path: str) -> str:
    """Reject empty paths and empty segments (``a..b``, ``.a``, ``a.``)."""
    if path == WILDCARD:
        return path
    if not isinstance(path, str) or not path or any(not part for part in path.split(".")):
        raise ValueError(f"Invalid state path: {path!r}")
    return path


def path_matches(subscription_path: str, update_path: str) -> bool:
    """True if ``update_path`` is ``subscription_path`` or a descendant of it.

    Examples:
        - ``user`` matches ``user``, ``user.profile``, ``user.profile.name``
        - ``user`` does not match ``username``
        - ``*`` matches everything
    """
    if subscription_path == WILDCARD:
        return True
    return update_path == subscription_path or update_path.startswith(subscription_path + ".")


__all__ = [
    "WILDCARD",
    "PathState",
    "SyncMode",
    "StateUpdate",
    "SnapshotEntry",
    "SubscriberCallback",
    "Subscription",
    "Transport",
    "validate_path",
    "path_matches",
]
