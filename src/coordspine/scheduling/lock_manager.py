"""Distributed lock manager over the coordination store.

Manifesto:
    Multiple instances must never execute the same job simultaneously.
    The lock manager provides atomic acquire/release with TTL-based
    auto-expiry so crashed instances don't cause permanent deadlocks.
    Set-if-absent gives O(1) conflict detection; release and extension are
    single compare-and-act scripts so a lock that expired and was taken over
    can never be deleted by its previous owner.

Tags:
    coord-spine, scheduling, distributed-locks, TTL, concurrency, safety

Doc-Types:
    api-reference, architecture-diagram


    Lock Manager Architecture::

        Instance A: try_lock("nightly")  ── SET lock:nightly "A:<ms>" NX PX ──► OK
        Instance B: try_lock("nightly")  ── SET lock:nightly "B:<ms>" NX PX ──► nil (skip)
        Instance A: unlock("nightly")    ── EVAL compare-prefix "A:" then DEL ─► 1

        Value format: "{owner_id}:{epoch_millis}"
        TTL: Locks auto-expire after ttl_seconds to recover from crashed owners.

    Known limitation: there is no fencing token. A job that outlives its TTL
    without calling extend_lock() can overlap with a second instance.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from coordspine.core.errors import LockUnavailable
from coordspine.core.logging import get_logger
from coordspine.core.store import CoordinationStore
from coordspine.core.timestamps import epoch_millis

logger = get_logger(__name__)

LOCK_PREFIX = "lock:"


class DistributedLockManager:
    """Named, TTL-bounded mutual-exclusion locks tagged with an owner identity.

    Example:
        >>> manager = DistributedLockManager(store, owner_id="worker-1")
        >>>
        >>> if manager.try_lock("nightly-cleanup", ttl_seconds=600):
        ...     try:
        ...         run_cleanup()
        ...     finally:
        ...         manager.unlock("nightly-cleanup")
        ... else:
        ...     print("Another instance has the lock")
    """

    def __init__(self, store: CoordinationStore, owner_id: str) -> None:
        """Initialize lock manager.

        Args:
            store: Shared coordination store
            owner_id: Identity of this process, generated once at startup and
                injected here. Must not contain ``:``.
        """
        if not owner_id or ":" in owner_id:
            raise ValueError(f"owner_id must be non-empty and must not contain ':': {owner_id!r}")
        self.store = store
        self.owner_id = owner_id

    @staticmethod
    def key_for(lock_key: str) -> str:
        return f"{LOCK_PREFIX}{lock_key}"

    @property
    def _owner_tag(self) -> str:
        return f"{self.owner_id}:"

    # === Acquire / release ===

    def try_lock(self, lock_key: str, ttl_seconds: float) -> bool:
        """Attempt to acquire ``lock_key`` once. Never blocks.

        Args:
            lock_key: Lock to acquire
            ttl_seconds: Lock expiry; must exceed the guarded work's worst case

        Returns:
            True iff this call created the lock value

        Raises:
            StoreUnavailable: Lock status unknown; do not proceed.
        """
        value = f"{self.owner_id}:{epoch_millis()}"
        if self.store.set_if_absent(self.key_for(lock_key), value, ttl_seconds):
            logger.debug("lock_acquired", lock_key=lock_key, owner_id=self.owner_id, ttl_seconds=ttl_seconds)
            return True

        logger.debug("lock_not_acquired", lock_key=lock_key, owner_id=self.owner_id)
        return False

    def try_lock_with_retry(
        self,
        lock_key: str,
        ttl_seconds: float,
        max_retries: int,
        retry_delay_seconds: float,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        """Try to acquire a lock up to ``max_retries + 1`` times.

        Args:
            lock_key: Lock to acquire
            ttl_seconds: Lock expiry
            max_retries: Additional attempts after the first
            retry_delay_seconds: Delay between attempts

        Returns:
            True if acquired on any attempt
        """
        for attempt in range(max_retries + 1):
            if self.try_lock(lock_key, ttl_seconds):
                return True
            if attempt < max_retries:
                sleep(retry_delay_seconds)
        return False

    def unlock(self, lock_key: str) -> bool:
        """Release ``lock_key`` if, and only if, this owner holds it.

        The owner check and the delete run as one atomic store operation.

        Returns:
            True if released, False if not held by this owner

        Raises:
            StoreUnavailable: Release outcome unknown.
        """
        if self.store.delete_if_prefix(self.key_for(lock_key), self._owner_tag):
            logger.debug("lock_released", lock_key=lock_key, owner_id=self.owner_id)
            return True

        logger.debug("lock_not_released", lock_key=lock_key, owner_id=self.owner_id, reason="not_owner")
        return False

    def extend_lock(self, lock_key: str, ttl_seconds: float) -> bool:
        """Reset the TTL of a lock this owner still holds.

        Long-running jobs call this periodically to avoid a second instance
        acquiring the lock mid-run.

        Returns:
            True if extended, False if the lock is no longer ours
        """
        if self.store.expire_if_prefix(self.key_for(lock_key), self._owner_tag, ttl_seconds):
            logger.debug("lock_extended", lock_key=lock_key, ttl_seconds=ttl_seconds)
            return True

        logger.warning("lock_extend_failed", lock_key=lock_key, owner_id=self.owner_id)
        return False

    @contextmanager
    def hold(self, lock_key: str, ttl_seconds: float) -> Iterator[DistributedLockManager]:
        """Context manager form of try_lock/unlock.

        Raises:
            LockUnavailable: The lock is held by another owner.
        """
        if not self.try_lock(lock_key, ttl_seconds):
            raise LockUnavailable(lock_key).with_context(owner_id=self.owner_id)
        try:
            yield self
        finally:
            self.unlock(lock_key)

    def execute_with_lock(self, lock_key: str, ttl_seconds: float, task: Callable[[], object]) -> bool:
        """Run ``task`` under the lock.

        Returns:
            True if the task ran, False if the lock was not acquired
        """
        if not self.try_lock(lock_key, ttl_seconds):
            return False
        try:
            task()
            return True
        finally:
            self.unlock(lock_key)

    # === Inspection (status reporting only, never for control decisions) ===

    def is_locked(self, lock_key: str) -> bool:
        """Check if ``lock_key`` is held by any owner."""
        return self.store.exists(self.key_for(lock_key))

    def is_locked_by_me(self, lock_key: str) -> bool:
        """Check if this owner currently holds ``lock_key``."""
        return self.get_lock_holder(lock_key) == self.owner_id

    def get_lock_holder(self, lock_key: str) -> str | None:
        """Get the owner id holding the lock, or None."""
        value = self.store.get(self.key_for(lock_key))
        if value is None:
            return None
        owner, _, _acquired_ms = value.rpartition(":")
        return owner or value

    def lock_ttl(self, lock_key: str) -> float | None:
        """Remaining seconds before the lock expires, or None if not held."""
        return self.store.ttl(self.key_for(lock_key))


__all__ = ["DistributedLockManager", "LOCK_PREFIX"]
