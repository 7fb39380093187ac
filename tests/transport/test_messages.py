"""Tests for the wire message codec."""

import json

import pytest

from syncspine.core.errors import MalformedMessageError
from syncspine.sync.models import SnapshotEntry, StateUpdate
from syncspine.transport.messages import (
    ResyncRequest,
    ResyncSnapshot,
    UpdateMessage,
    decode,
    encode,
    encode_update,
)


class TestEncode:
    def test_update_uses_wire_field_names(self):
        raw = encode_update(
            StateUpdate(path="call.42", value={"muted": True}, sequence=3, origin_id="c1", timestamp=99)
        )
        assert json.loads(raw) == {
            "type": "update",
            "path": "call.42",
            "value": {"muted": True},
            "sequence": 3,
            "originId": "c1",
            "timestamp": 99,
        }

    def test_resync_request(self):
        assert json.loads(encode(ResyncRequest(paths=["a", "b"]))) == {
            "type": "resync-request",
            "paths": ["a", "b"],
        }


class TestDecode:
    def test_update(self):
        message = decode(
            '{"type": "update", "path": "a.b", "value": 1, "sequence": 2, "originId": "peer"}'
        )
        assert isinstance(message, UpdateMessage)
        assert message.to_update() == StateUpdate(path="a.b", value=1, sequence=2, origin_id="peer")

    def test_snapshot(self):
        message = decode(
            '{"type": "resync-snapshot", "entries": ['
            '{"path": "a", "value": [1], "sequence": 4},'
            '{"path": "b", "value": null, "sequence": 1, "timestamp": 7, "originId": "x"}]}'
        )
        assert isinstance(message, ResyncSnapshot)
        assert message.to_entries() == [
            SnapshotEntry(path="a", value=[1], sequence=4),
            SnapshotEntry(path="b", value=None, sequence=1, timestamp=7, origin_id="x"),
        ]

    def test_unknown_fields_ignored(self):
        message = decode('{"type": "resync-request", "paths": ["a"], "trace": "t-1"}')
        assert isinstance(message, ResyncRequest)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "{}",
            '{"type": "presence"}',
            '{"type": "update", "path": "a", "sequence": 1}',
            '{"type": "update", "path": "a", "sequence": -1, "originId": "x"}',
            '{"type": "update", "path": "", "sequence": 1, "originId": "x"}',
            '{"type": "resync-snapshot", "entries": [{"value": 1}]}',
        ],
    )
    def test_malformed(self, raw):
        with pytest.raises(MalformedMessageError) as excinfo:
            decode(raw)
        assert excinfo.value.context.component == "connection"
