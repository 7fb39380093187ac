"""Shared state synchronization: ordered updates, subscriptions, resync.

Modules
-------
models          StateUpdate, SnapshotEntry, PathState, SyncMode, Transport
synchronizer    SharedStateSynchronizer
"""

from syncspine.sync.models import (
    WILDCARD,
    PathState,
    SnapshotEntry,
    StateUpdate,
    Subscription,
    SyncMode,
    Transport,
    path_matches,
    validate_path,
)
from syncspine.sync.synchronizer import SharedStateSynchronizer, SyncStats

__all__ = [
    "WILDCARD",
    "PathState",
    "SyncMode",
    "StateUpdate",
    "SnapshotEntry",
    "Subscription",
    "Transport",
    "path_matches",
    "validate_path",
    "SharedStateSynchronizer",
    "SyncStats",
]
