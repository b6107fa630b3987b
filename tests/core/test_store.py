"""Tests for coordspine.core.store: in-memory and Redis coordination stores."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
import redis

from coordspine.core.errors import StoreUnavailable
from coordspine.core.settings import CoordSettings
from coordspine.core.store import (
    CoordinationStore,
    InMemoryCoordinationStore,
    RedisCoordinationStore,
    build_store,
)


# ── In-memory store ─────────────────────────────────────────────────────


class TestInMemorySetIfAbsent:
    def test_first_writer_wins(self, store):
        assert store.set_if_absent("k", "a", 10) is True
        assert store.set_if_absent("k", "b", 10) is False
        assert store.get("k") == "a"

    def test_expired_value_can_be_replaced(self, store, clock):
        store.set_if_absent("k", "a", 10)
        clock.advance(10)
        assert store.get("k") is None
        assert store.set_if_absent("k", "b", 10) is True

    def test_concurrent_writers_only_one_wins(self):
        store = InMemoryCoordinationStore()
        barrier = threading.Barrier(8)
        wins = []

        def contend(i: int) -> None:
            barrier.wait()
            if store.set_if_absent("k", str(i), 30):
                wins.append(i)

        threads = [threading.Thread(target=contend, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert store.get("k") == str(wins[0])

    def test_satisfies_protocol(self, store):
        assert isinstance(store, CoordinationStore)


class TestInMemoryConditionalOps:
    def test_compare_and_pop_deletes_on_match(self, store):
        store.set("k", "v")
        assert store.compare_and_pop("k", "v") == "v"
        assert store.exists("k") is False

    def test_compare_and_pop_keeps_on_mismatch(self, store):
        store.set("k", "v")
        assert store.compare_and_pop("k", "other") == "v"
        assert store.get("k") == "v"

    def test_compare_and_pop_missing(self, store):
        assert store.compare_and_pop("missing", "v") is None

    def test_delete_if_prefix(self, store):
        store.set("lock:x", "owner-a:123")
        assert store.delete_if_prefix("lock:x", "owner-b:") is False
        assert store.delete_if_prefix("lock:x", "owner-a:") is True
        assert store.exists("lock:x") is False

    def test_expire_if_prefix_resets_ttl(self, store, clock):
        store.set("lock:x", "owner-a:123", 10)
        clock.advance(8)
        assert store.expire_if_prefix("lock:x", "owner-a:", 10) is True
        clock.advance(8)
        assert store.get("lock:x") == "owner-a:123"
        assert store.ttl("lock:x") == pytest.approx(2.0)

    def test_expire_if_prefix_rejects_other_owner(self, store):
        store.set("lock:x", "owner-a:123", 10)
        assert store.expire_if_prefix("lock:x", "owner-b:", 10) is False

    def test_get_and_delete(self, store):
        store.set("k", "v")
        assert store.get_and_delete("k") == "v"
        assert store.get_and_delete("k") is None


class TestInMemoryMisc:
    def test_set_overwrites_and_clears_ttl(self, store, clock):
        store.set("k", "a", 5)
        store.set("k", "b")
        clock.advance(100)
        assert store.get("k") == "b"
        assert store.ttl("k") is None

    def test_increment_preserves_ttl(self, store, clock):
        assert store.increment("n") == 1
        store.expire("n", 10)
        assert store.increment("n", 4) == 5
        clock.advance(10)
        assert store.exists("n") is False

    def test_delete(self, store):
        store.set("k", "v")
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_clear(self, store):
        store.set("a", "1")
        store.clear()
        assert store.exists("a") is False


# ── Redis store (mocked client) ─────────────────────────────────────────


@pytest.fixture
def client():
    client = MagicMock(spec=redis.Redis)
    client.register_script.side_effect = lambda source: MagicMock(name="script", source=source)
    return client


class TestRedisStore:
    def test_registers_three_scripts(self, client):
        RedisCoordinationStore(client)
        assert client.register_script.call_count == 3

    def test_set_if_absent_uses_nx_px(self, client):
        client.set.return_value = True
        store = RedisCoordinationStore(client)

        assert store.set_if_absent("lock:x", "a:1", 1.5) is True
        client.set.assert_called_once_with("lock:x", "a:1", nx=True, px=1500)

    def test_set_if_absent_returns_false_when_present(self, client):
        client.set.return_value = None
        store = RedisCoordinationStore(client)
        assert store.set_if_absent("lock:x", "a:1", 10) is False

    def test_delete_if_prefix_is_one_scripted_call(self, client):
        store = RedisCoordinationStore(client)
        store._delete_if_prefix.return_value = 1

        assert store.delete_if_prefix("lock:x", "a:") is True
        store._delete_if_prefix.assert_called_once_with(keys=["lock:x"], args=["a:"])
        client.delete.assert_not_called()
        client.get.assert_not_called()

    def test_expire_if_prefix_passes_millis(self, client):
        store = RedisCoordinationStore(client)
        store._expire_if_prefix.return_value = 1

        assert store.expire_if_prefix("lock:x", "a:", 2) is True
        store._expire_if_prefix.assert_called_once_with(keys=["lock:x"], args=["a:", 2000])

    def test_compare_and_pop(self, client):
        store = RedisCoordinationStore(client)
        store._compare_and_pop.return_value = "tok"
        assert store.compare_and_pop("refresh_token:u1", "tok") == "tok"

    def test_get_and_delete_uses_getdel(self, client):
        client.getdel.return_value = "v"
        store = RedisCoordinationStore(client)
        assert store.get_and_delete("k") == "v"
        client.getdel.assert_called_once_with("k")

    def test_ttl_negative_is_none(self, client):
        client.pttl.return_value = -2
        store = RedisCoordinationStore(client)
        assert store.ttl("k") is None

    def test_ttl_converts_millis(self, client):
        client.pttl.return_value = 1500
        store = RedisCoordinationStore(client)
        assert store.ttl("k") == 1.5

    def test_redis_error_becomes_store_unavailable(self, client):
        client.set.side_effect = redis.exceptions.ConnectionError("connection refused")
        store = RedisCoordinationStore(client)

        with pytest.raises(StoreUnavailable) as exc_info:
            store.set_if_absent("lock:x", "a:1", 10)

        err = exc_info.value
        assert err.retryable is True
        assert isinstance(err.cause, redis.exceptions.ConnectionError)
        assert err.context.metadata["store_key"] == "lock:x"

    def test_script_error_becomes_store_unavailable(self, client):
        store = RedisCoordinationStore(client)
        store._delete_if_prefix.side_effect = redis.exceptions.TimeoutError("timeout")

        with pytest.raises(StoreUnavailable):
            store.delete_if_prefix("lock:x", "a:")


class TestBuildStore:
    def test_memory_url(self):
        assert isinstance(build_store(CoordSettings(redis_url="memory://")), InMemoryCoordinationStore)

    def test_redis_url(self):
        store = build_store(CoordSettings(redis_url="redis://localhost:6379/0"))
        assert isinstance(store, RedisCoordinationStore)
