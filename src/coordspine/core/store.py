"""
Coordination store: the shared key-value substrate for locks and tokens.

Every safety property in coord-spine (mutual exclusion, single-use refresh
tokens) rests on a handful of atomic primitives of one shared store. This
module defines that contract and provides two implementations.

Manifesto:
    Correctness across processes must not depend on two round trips lining
    up. Every conditional write here is one atomic server-side operation:
    ``SET NX PX`` for acquisition, ``GETDEL`` for consumption and Lua
    scripts for compare-and-delete / compare-and-expire.

Architecture:
    ::

        CoordinationStore (Protocol)
        ├── InMemoryCoordinationStore  : single process, tests, local dev
        └── RedisCoordinationStore     : fleet-wide, redis-py + Lua scripts

        API: set_if_absent(key, value, ttl) → bool
             set(key, value, ttl=None)
             get(key) → str | None
             get_and_delete(key) → str | None
             compare_and_pop(key, expected) → str | None
             delete_if_prefix(key, prefix) → bool
             expire_if_prefix(key, prefix, ttl) → bool
             delete / exists / expire / increment / ttl

Guardrails:
    ❌ DON'T: Implement "check then delete" as get() followed by delete()
    ✅ DO: Use delete_if_prefix() / compare_and_pop()

    ❌ DON'T: Treat StoreUnavailable as "not locked"
    ✅ DO: Propagate it; lock state is unknown

Tags:
    redis, coordination, atomic, ttl, lua, coord-spine
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import redis
from redis.exceptions import RedisError

from coordspine.core.errors import StoreUnavailable

if TYPE_CHECKING:
    from coordspine.core.settings import CoordSettings


@runtime_checkable
class CoordinationStore(Protocol):
    """Atomic key-value primitives shared by every instance in the fleet.

    TTLs are in seconds and may be fractional. Implementations raise
    :class:`~coordspine.core.errors.StoreUnavailable` when the store cannot be
    reached.
    """

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        """Write ``value`` only if no live value exists. True iff written."""
        ...

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Unconditionally write ``value``, replacing any existing one."""
        ...

    def get(self, key: str) -> str | None:
        ...

    def get_and_delete(self, key: str) -> str | None:
        """Atomically read and remove a value."""
        ...

    def compare_and_pop(self, key: str, expected: str) -> str | None:
        """Atomically return the current value, deleting it only if it equals ``expected``."""
        ...

    def delete_if_prefix(self, key: str, prefix: str) -> bool:
        """Atomically delete the value only if it starts with ``prefix``."""
        ...

    def expire_if_prefix(self, key: str, prefix: str, ttl_seconds: float) -> bool:
        """Atomically reset the TTL only if the value starts with ``prefix``."""
        ...

    def delete(self, key: str) -> bool:
        ...

    def exists(self, key: str) -> bool:
        ...

    def expire(self, key: str, ttl_seconds: float) -> bool:
        ...

    def increment(self, key: str, amount: int = 1) -> int:
        ...

    def ttl(self, key: str) -> float | None:
        """Remaining lifetime in seconds, or None if missing or persistent."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryCoordinationStore:
    """Thread-safe in-process store with lazy TTL expiry.

    Atomicity is provided by a single ``threading.Lock``; it is only shared
    between threads of one process. ``clock`` returns seconds and can be
    replaced in tests to move time forward without sleeping.

    Example:
        >>> store = InMemoryCoordinationStore()
        >>> store.set_if_absent("lock:nightly", "a:1", ttl_seconds=60)
        True
        >>> store.set_if_absent("lock:nightly", "b:2", ttl_seconds=60)
        False
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._mutex = threading.Lock()
        self._clock = clock

    def _expires_at(self, ttl_seconds: float | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    def _live(self, key: str) -> str | None:
        """Return the live value for ``key``, purging it if expired. Caller holds the mutex."""
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        with self._mutex:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expires_at(ttl_seconds))
            return True

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._mutex:
            self._data[key] = (value, self._expires_at(ttl_seconds))

    def get(self, key: str) -> str | None:
        with self._mutex:
            return self._live(key)

    def get_and_delete(self, key: str) -> str | None:
        with self._mutex:
            value = self._live(key)
            if value is not None:
                del self._data[key]
            return value

    def compare_and_pop(self, key: str, expected: str) -> str | None:
        with self._mutex:
            value = self._live(key)
            if value is not None and value == expected:
                del self._data[key]
            return value

    def delete_if_prefix(self, key: str, prefix: str) -> bool:
        with self._mutex:
            value = self._live(key)
            if value is None or not value.startswith(prefix):
                return False
            del self._data[key]
            return True

    def expire_if_prefix(self, key: str, prefix: str, ttl_seconds: float) -> bool:
        with self._mutex:
            value = self._live(key)
            if value is None or not value.startswith(prefix):
                return False
            self._data[key] = (value, self._expires_at(ttl_seconds))
            return True

    def delete(self, key: str) -> bool:
        with self._mutex:
            if self._live(key) is None:
                return False
            del self._data[key]
            return True

    def exists(self, key: str) -> bool:
        with self._mutex:
            return self._live(key) is not None

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._mutex:
            value = self._live(key)
            if value is None:
                return False
            self._data[key] = (value, self._expires_at(ttl_seconds))
            return True

    def increment(self, key: str, amount: int = 1) -> int:
        with self._mutex:
            current = self._live(key)
            expires_at = self._data[key][1] if current is not None else None
            new_value = int(current or 0) + amount
            self._data[key] = (str(new_value), expires_at)
            return new_value

    def ttl(self, key: str) -> float | None:
        with self._mutex:
            if self._live(key) is None:
                return None
            expires_at = self._data[key][1]
            return None if expires_at is None else max(0.0, expires_at - self._clock())

    def clear(self) -> None:
        """Remove all keys. Testing only."""
        with self._mutex:
            self._data.clear()


# ------------------------------------------------------------------ #
# Redis Store
# ------------------------------------------------------------------ #

# KEYS[1] = key, ARGV[1] = expected value
_COMPARE_AND_POP = """
local current = redis.call('GET', KEYS[1])
if current and current == ARGV[1] then
    redis.call('DEL', KEYS[1])
end
return current
"""

# KEYS[1] = key, ARGV[1] = owner prefix
_DELETE_IF_PREFIX = """
local current = redis.call('GET', KEYS[1])
if current and string.sub(current, 1, string.len(ARGV[1])) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# KEYS[1] = key, ARGV[1] = owner prefix, ARGV[2] = ttl in milliseconds
_EXPIRE_IF_PREFIX = """
local current = redis.call('GET', KEYS[1])
if current and string.sub(current, 1, string.len(ARGV[1])) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


def _to_millis(ttl_seconds: float) -> int:
    return max(1, int(ttl_seconds * 1000))


class RedisCoordinationStore:
    """Redis-backed store: every method is a single round trip.

    Conditional operations run as Lua scripts registered once per client, so
    the read and the write happen inside one server-side command.

    Example:
        store = RedisCoordinationStore.from_url("redis://localhost:6379/0")
        store.set_if_absent("lock:nightly-cleanup", "a1b2:1718000000000", 600)

    Raises:
        StoreUnavailable: On any ``redis.exceptions.RedisError``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._compare_and_pop = client.register_script(_COMPARE_AND_POP)
        self._delete_if_prefix = client.register_script(_DELETE_IF_PREFIX)
        self._expire_if_prefix = client.register_script(_EXPIRE_IF_PREFIX)

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> RedisCoordinationStore:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    @contextmanager
    def _translate_errors(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            raise StoreUnavailable(
                f"Coordination store {operation} failed: {exc}", cause=exc
            ).with_context(store_key=key, operation=operation) from exc

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        with self._translate_errors("set_if_absent", key):
            return bool(self._client.set(key, value, nx=True, px=_to_millis(ttl_seconds)))

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._translate_errors("set", key):
            if ttl_seconds is None:
                self._client.set(key, value)
            else:
                self._client.set(key, value, px=_to_millis(ttl_seconds))

    def get(self, key: str) -> str | None:
        with self._translate_errors("get", key):
            return self._client.get(key)

    def get_and_delete(self, key: str) -> str | None:
        with self._translate_errors("get_and_delete", key):
            return self._client.getdel(key)

    def compare_and_pop(self, key: str, expected: str) -> str | None:
        with self._translate_errors("compare_and_pop", key):
            return self._compare_and_pop(keys=[key], args=[expected])

    def delete_if_prefix(self, key: str, prefix: str) -> bool:
        with self._translate_errors("delete_if_prefix", key):
            return bool(self._delete_if_prefix(keys=[key], args=[prefix]))

    def expire_if_prefix(self, key: str, prefix: str, ttl_seconds: float) -> bool:
        with self._translate_errors("expire_if_prefix", key):
            return bool(self._expire_if_prefix(keys=[key], args=[prefix, _to_millis(ttl_seconds)]))

    def delete(self, key: str) -> bool:
        with self._translate_errors("delete", key):
            return self._client.delete(key) > 0

    def exists(self, key: str) -> bool:
        with self._translate_errors("exists", key):
            return bool(self._client.exists(key))

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._translate_errors("expire", key):
            return bool(self._client.pexpire(key, _to_millis(ttl_seconds)))

    def increment(self, key: str, amount: int = 1) -> int:
        with self._translate_errors("increment", key):
            return int(self._client.incrby(key, amount))

    def ttl(self, key: str) -> float | None:
        with self._translate_errors("ttl", key):
            remaining = self._client.pttl(key)
        # -2: missing, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return remaining / 1000.0

    def ping(self) -> bool:
        with self._translate_errors("ping", ""):
            return bool(self._client.ping())


def build_store(settings: CoordSettings) -> CoordinationStore:
    """Create the store selected by ``settings.redis_url``."""
    if settings.uses_memory_store:
        return InMemoryCoordinationStore()
    return RedisCoordinationStore.from_url(
        settings.redis_url, socket_timeout=settings.redis_socket_timeout_seconds
    )


__all__ = [
    "CoordinationStore",
    "InMemoryCoordinationStore",
    "RedisCoordinationStore",
    "build_store",
]
