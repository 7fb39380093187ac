"""Tests for syncspine.sync.models."""

import pytest

from syncspine.sync.models import SnapshotEntry, StateUpdate, path_matches, validate_path


class TestPathMatches:
    @pytest.mark.parametrize(
        "subscription,update",
        [
            ("user", "user"),
            ("user", "user.profile"),
            ("user", "user.profile.name"),
            ("user.profile", "user.profile.name"),
            ("*", "anything.at.all"),
        ],
    )
    def test_matches(self, subscription, update):
        assert path_matches(subscription, update)

    @pytest.mark.parametrize(
        "subscription,update",
        [
            ("user", "username"),
            ("user.profile", "user"),
            ("user.profile", "user.settings"),
        ],
    )
    def test_does_not_match(self, subscription, update):
        assert not path_matches(subscription, update)


class TestValidatePath:
    @pytest.mark.parametrize("path", ["", ".a", "a.", "a..b"])
    def test_invalid(self, path):
        with pytest.raises(ValueError):
            validate_path(path)

    def test_valid(self):
        assert validate_path("call.42.quality") == "call.42.quality"
        assert validate_path("*") == "*"


class TestStateUpdate:
    def test_ordering_key(self):
        a = StateUpdate(path="p", value=1, sequence=7, origin_id="x", timestamp=50)
        b = StateUpdate(path="p", value=2, sequence=7, origin_id="y", timestamp=100)
        c = StateUpdate(path="p", value=3, sequence=8, origin_id="x", timestamp=0)
        assert a.ordering_key < b.ordering_key < c.ordering_key

    def test_snapshot_entry_to_update(self):
        update = SnapshotEntry(path="p", value=1, sequence=3).to_update()
        assert update.origin_id == "snapshot"
        assert update.sequence == 3
