"""
syncspine - resilient client-side synchronization for real-time communication apps.

Manifesto:
    A communication client has to keep working while the network, the
    identity provider and local storage each fail on their own schedule.
    syncspine keeps four concerns apart so each can recover without the
    others noticing:

    - **Tiered cache:** memory → persistent → fallback, TTL enforced, tier faults absorbed
    - **Token lifecycle:** one valid credential per scope, refreshed early, coalesced
    - **Shared state:** path-addressed, ordered by (sequence, timestamp), resync on reconnect
    - **Connection manager:** capped exponential backoff, fresh token per attempt

Architecture::

    core/           errors, logging, settings, clock, backoff
    cache/          StorageBackend implementations + TieredCache
    auth/           TokenLifecycleManager
    sync/           SharedStateSynchronizer + data model
    transport/      ConnectionManager, wire messages, InMemoryHub
    client.py       SyncClient facade and factories
"""

__version__ = "0.1.0"

from syncspine.client import SyncClient
from syncspine.core.settings import SyncSettings

__all__ = ["SyncClient", "SyncSettings", "__version__"]
