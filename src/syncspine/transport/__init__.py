"""Real-time channel: resilient connection manager, wire messages, in-memory hub.

Modules
-------
connection  ConnectionManager, ConnectionState, Channel protocol
messages    pydantic wire models + encode/decode
memory      InMemoryHub / InMemoryChannel (single-process authoritative peer)
"""

from syncspine.transport.connection import (
    Channel,
    ChannelFactory,
    ConnectionManager,
    ConnectionState,
    ConnectionStats,
)
from syncspine.transport.memory import InMemoryChannel, InMemoryHub
from syncspine.transport.messages import (
    ResyncRequest,
    ResyncSnapshot,
    UpdateMessage,
    decode,
    encode,
    encode_update,
)

__all__ = [
    "Channel",
    "ChannelFactory",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStats",
    "InMemoryChannel",
    "InMemoryHub",
    "UpdateMessage",
    "ResyncRequest",
    "ResyncSnapshot",
    "encode",
    "encode_update",
    "decode",
]
