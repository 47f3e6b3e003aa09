"""
tests/test_storage.py - Store backends, atomic batches and retry policy
"""

import time
from unittest.mock import MagicMock

import pytest
import redis

from pattern_monitor.errors import StorageError
from pattern_monitor.storage import (
    InMemoryStore,
    KeyValueStore,
    RedisStore,
    RetryingStore,
)
from pattern_monitor.types import StoreConfig

FAST = StoreConfig(attempts=3, backoff_seconds=0.0, timeout_seconds=1.0)


class DictStore(KeyValueStore):
    """Store without native transactions; fails writes to chosen keys."""

    def __init__(self, fail_on=()):
        self.data = {}
        self.fail_on = set(fail_on)

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        if key in self.fail_on:
            raise ConnectionError(f"write to {key} refused")
        self.data[key] = value

    def exists(self, key):
        return key in self.data

    def delete(self, key):
        self.data.pop(key, None)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class TestInMemoryStore:

    def test_basic_operations(self, store):
        assert store.get("k") is None
        assert not store.exists("k")
        store.set("k", b"v")
        assert store.get("k") == b"v"
        assert store.exists("k")
        store.delete("k")
        assert not store.exists("k")

    def test_set_overwrites(self, store):
        store.set("k", b"one")
        store.set("k", b"two")
        assert store.get("k") == b"two"

    def test_set_many_and_keys(self, store):
        store.set_many({"semantic:v1:a": b"1", "semantic:v1:b": b"2", "bundle:v1:s": b"3"})
        assert store.keys("semantic:v1:*") == ["semantic:v1:a", "semantic:v1:b"]
        assert store.keys() == ["bundle:v1:s", "semantic:v1:a", "semantic:v1:b"]
        assert len(store) == 3


# =============================================================================
# DEFAULT BATCH WRITE
# =============================================================================


class TestSetManyRollback:

    def test_success(self):
        s = DictStore()
        s.set_many({"a": b"1", "b": b"2"})
        assert s.data == {"a": b"1", "b": b"2"}

    def test_failure_restores_previous_values(self):
        s = DictStore(fail_on={"c"})
        s.data = {"a": b"old"}
        with pytest.raises(StorageError, match="refused"):
            s.set_many({"a": b"new", "b": b"2", "c": b"3"})
        assert s.data == {"a": b"old"}


# =============================================================================
# REDIS STORE
# =============================================================================


class TestRedisStore:

    @pytest.fixture
    def client(self):
        return MagicMock(spec=redis.Redis)

    def test_get_set(self, client):
        client.get.return_value = b"payload"
        s = RedisStore(client=client)
        assert s.get("k") == b"payload"
        s.set("k", b"v")
        client.set.assert_called_once_with("k", b"v")

    def test_exists(self, client):
        client.exists.return_value = 1
        assert RedisStore(client=client).exists("k") is True

    def test_set_many_is_transactional(self, client):
        pipe = MagicMock()
        client.pipeline.return_value = pipe
        RedisStore(client=client).set_many({"a": b"1", "b": b"2"})

        client.pipeline.assert_called_once_with(transaction=True)
        assert pipe.set.call_count == 2
        pipe.execute.assert_called_once_with()
        client.set.assert_not_called()

    def test_redis_errors_become_storage_errors(self, client):
        client.get.side_effect = redis.ConnectionError("connection refused")
        with pytest.raises(StorageError, match="connection refused"):
            RedisStore(client=client).get("k")

    def test_failed_exec_raises(self, client):
        pipe = MagicMock()
        pipe.execute.side_effect = redis.TimeoutError("timed out")
        client.pipeline.return_value = pipe
        with pytest.raises(StorageError, match="MULTI/EXEC"):
            RedisStore(client=client).set_many({"a": b"1"})


# =============================================================================
# RETRY POLICY
# =============================================================================


class TestRetryingStore:

    def test_passes_through(self, store):
        s = RetryingStore(store, FAST)
        s.set_many({"a": b"1"})
        assert s.get("a") == b"1"
        assert s.exists("a")
        s.delete("a")
        assert store.get("a") is None

    def test_recovers_from_transient_failure(self):
        inner = MagicMock(spec=KeyValueStore)
        inner.get.side_effect = [ConnectionError("blip"), StorageError("blip"), b"v"]
        assert RetryingStore(inner, FAST).get("k") == b"v"
        assert inner.get.call_count == 3

    def test_exhaustion_raises_storage_error(self):
        inner = MagicMock(spec=KeyValueStore)
        inner.set_many.side_effect = ConnectionError("down")
        with pytest.raises(StorageError, match="after 3 attempt"):
            RetryingStore(inner, FAST).set_many({"a": b"1"})
        assert inner.set_many.call_count == 3

    def test_timeout(self):
        inner = MagicMock(spec=KeyValueStore)
        inner.get.side_effect = lambda key: time.sleep(0.5)
        config = StoreConfig(attempts=1, backoff_seconds=0.0, timeout_seconds=0.05)
        with pytest.raises(StorageError, match="timed out"):
            RetryingStore(inner, config).get("k")

    def test_backoff_is_exponential(self, monkeypatch):
        delays = []
        monkeypatch.setattr("pattern_monitor.storage.time.sleep", delays.append)
        inner = MagicMock(spec=KeyValueStore)
        inner.exists.side_effect = ConnectionError("down")
        config = StoreConfig(attempts=4, backoff_seconds=0.1, timeout_seconds=1.0)
        with pytest.raises(StorageError):
            RetryingStore(inner, config).exists("k")
        assert delays == pytest.approx([0.1, 0.2, 0.4])

    def test_retry_waits_for_timed_out_write(self):
        """A slow failing batch rolls back before the retry writes."""

        class SlowFirstBatch(DictStore):
            def __init__(self):
                super().__init__()
                self.stalled = False

            def set(self, key, value):
                if key == "b" and not self.stalled:
                    self.stalled = True
                    time.sleep(0.2)
                    raise ConnectionError("connection reset")
                super().set(key, value)

        inner = SlowFirstBatch()
        config = StoreConfig(attempts=2, backoff_seconds=0.0, timeout_seconds=0.05)
        RetryingStore(inner, config).set_many({"a": b"1", "b": b"2", "c": b"3"})
        assert inner.data == {"a": b"1", "b": b"2", "c": b"3"}

    def test_late_success_is_not_repeated(self):
        inner = MagicMock(spec=KeyValueStore)

        def slow_get(key):
            time.sleep(0.1)
            return b"late"

        inner.get.side_effect = slow_get
        config = StoreConfig(attempts=2, backoff_seconds=0.0, timeout_seconds=0.02)
        assert RetryingStore(inner, config).get("k") == b"late"
        assert inner.get.call_count == 1
