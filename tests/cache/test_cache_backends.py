"""
Tests for syncspine.cache.backends.

Covers:
- MemoryStore: get/set/delete/keys/clear, LRU eviction
- SqliteStore: JSON round-trip, persistence across instances
- RedisStore: key prefixing and SETEX against a mocked client
"""

import json
from unittest.mock import MagicMock

from syncspine.cache.backends import MemoryStore, RedisStore, SqliteStore, StorageBackend


class TestMemoryStore:
    def test_basic_get_set(self):
        store = MemoryStore()
        store.set("k", {"data": [1, 2, 3]})
        assert store.get("k") == {"data": [1, 2, 3]}

    def test_missing_key(self):
        assert MemoryStore().get("missing") is None

    def test_delete_missing_is_noop(self):
        store = MemoryStore()
        store.delete("missing")
        assert store.size() == 0

    def test_lru_eviction(self):
        store = MemoryStore(max_size=2)
        store.set("a", 1)
        store.set("b", 2)
        store.get("a")  # a is now most recent
        store.set("c", 3)
        assert store.get("b") is None
        assert store.get("a") == 1
        assert store.get("c") == 3

    def test_keys_and_clear(self):
        store = MemoryStore()
        store.set("a", 1)
        store.set("b", 2)
        assert sorted(store.keys()) == ["a", "b"]
        store.clear()
        assert store.keys() == []

    def test_protocol_compliance(self):
        assert isinstance(MemoryStore(), StorageBackend)


class TestSqliteStore:
    def test_round_trip(self, sqlite_store):
        sqlite_store.set("k", {"value": [1, "two"], "expires_at": None})
        assert sqlite_store.get("k") == {"value": [1, "two"], "expires_at": None}

    def test_overwrite_and_delete(self, sqlite_store):
        sqlite_store.set("k", 1)
        sqlite_store.set("k", 2)
        assert sqlite_store.get("k") == 2
        sqlite_store.delete("k")
        assert sqlite_store.get("k") is None

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "cache.db"
        first = SqliteStore(path)
        first.set("state:presence", {"value": "away", "expires_at": None})
        first.close()

        second = SqliteStore(path)
        assert second.get("state:presence") == {"value": "away", "expires_at": None}
        assert second.keys() == ["state:presence"]
        second.close()

    def test_clear(self, sqlite_store):
        sqlite_store.set("a", 1)
        sqlite_store.clear()
        assert sqlite_store.keys() == []


class TestRedisStore:
    def test_set_with_ttl_uses_setex(self):
        client = MagicMock()
        store = RedisStore(prefix="ns:", client=client)
        store.set("k", {"value": 1}, ttl_seconds=10.2)
        client.setex.assert_called_once_with("ns:k", 11, json.dumps({"value": 1}))

    def test_set_without_ttl(self):
        client = MagicMock()
        store = RedisStore(prefix="ns:", client=client)
        store.set("k", 1)
        client.set.assert_called_once_with("ns:k", "1")

    def test_get_decodes_json(self):
        client = MagicMock()
        client.get.return_value = b'{"value": 2}'
        assert RedisStore(client=client).get("k") == {"value": 2}

    def test_get_missing(self):
        client = MagicMock()
        client.get.return_value = None
        assert RedisStore(client=client).get("k") is None

    def test_keys_strip_prefix(self):
        client = MagicMock()
        client.scan_iter.return_value = iter([b"ns:a", b"ns:b"])
        assert RedisStore(prefix="ns:", client=client).keys() == ["a", "b"]
        client.scan_iter.assert_called_once_with(match="ns:*")
