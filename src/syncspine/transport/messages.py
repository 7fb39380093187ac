"""Wire messages exchanged over the real-time channel.

Three JSON shapes, discriminated by ``type``::

    {"type": "update", "path": "call.42.quality", "value": {...},
     "sequence": 17, "originId": "client-abc", "timestamp": 1700000000000}
    {"type": "resync-request", "paths": ["call.42", "presence"]}
    {"type": "resync-snapshot", "entries": [{"path": "...", "value": {...}, "sequence": 42}]}

``decode`` raises :class:`MalformedMessageError` for anything else; the
connection manager logs and drops those.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from syncspine.core.errors import MalformedMessageError
from syncspine.sync.models import SnapshotEntry, StateUpdate


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UpdateMessage(_Message):
    type: Literal["update"] = "update"
    path: str = Field(min_length=1)
    value: Any = None
    sequence: int = Field(ge=0)
    origin_id: str = Field(alias="originId")
    timestamp: int = 0

    @classmethod
    def from_update(cls, update: StateUpdate) -> UpdateMessage:
        return cls(
            path=update.path,
            value=update.value,
            sequence=update.sequence,
            origin_id=update.origin_id,
            timestamp=update.timestamp,
        )

    def to_update(self) -> StateUpdate:
        return StateUpdate(
            path=self.path,
            value=self.value,
            sequence=self.sequence,
            origin_id=self.origin_id,
            timestamp=self.timestamp,
        )


class ResyncRequest(_Message):
    type: Literal["resync-request"] = "resync-request"
    paths: list[str]


class SnapshotEntryModel(_Message):
    path: str = Field(min_length=1)
    value: Any = None
    sequence: int = Field(ge=0)
    timestamp: int = 0
    origin_id: str | None = Field(default=None, alias="originId")

    def to_entry(self) -> SnapshotEntry:
        return SnapshotEntry(
            path=self.path,
            value=self.value,
            sequence=self.sequence,
            timestamp=self.timestamp,
            origin_id=self.origin_id,
        )


class ResyncSnapshot(_Message):
    type: Literal["resync-snapshot"] = "resync-snapshot"
    entries: list[SnapshotEntryModel] = Field(default_factory=list)

    @classmethod
    def from_entries(cls, entries: list[SnapshotEntry]) -> ResyncSnapshot:
        return cls(
            entries=[
                SnapshotEntryModel(
                    path=e.path,
                    value=e.value,
                    sequence=e.sequence,
                    timestamp=e.timestamp,
                    origin_id=e.origin_id,
                )
                for e in entries
            ]
        )

    def to_entries(self) -> list[SnapshotEntry]:
        return [entry.to_entry() for entry in self.entries]


Message = Annotated[
    UpdateMessage | ResyncRequest | ResyncSnapshot,
    Field(discriminator="type"),
]

_adapter: TypeAdapter[UpdateMessage | ResyncRequest | ResyncSnapshot] = TypeAdapter(Message)


def encode(message: UpdateMessage | ResyncRequest | ResyncSnapshot) -> str:
    """Serialize a message to JSON text using wire field names."""
    return message.model_dump_json(by_alias=True)


def encode_update(update: StateUpdate) -> str:
    return encode(UpdateMessage.from_update(update))


def decode(raw: str | bytes) -> UpdateMessage | ResyncRequest | ResyncSnapshot:
    """Parse JSON text into a typed message.

    Raises:
        MalformedMessageError: Invalid JSON, unknown ``type`` or bad fields.
    """
    try:
        return _adapter.validate_json(raw)
    except ValidationError as exc:
        preview = raw[:200] if isinstance(raw, (str, bytes)) else repr(raw)[:200]
        raise MalformedMessageError(
            f"Malformed channel message: {exc.error_count()} error(s)", cause=exc
        ).with_context(component="connection", raw=str(preview)) from exc


__all__ = [
    "UpdateMessage",
    "ResyncRequest",
    "ResyncSnapshot",
    "SnapshotEntryModel",
    "Message",
    "encode",
    "encode_update",
    "decode",
]
