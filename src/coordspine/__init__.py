"""
coord-spine: cluster coordination and reliable-delivery primitives.

Stateless application fleets share one coordination store (Redis in
production, in-process for tests) and use it to:

- run a scheduled job at most once concurrently across the fleet
  (:class:`~coordspine.scheduling.ExecutionGuard`),
- retry failed outbound notifications with bounded exponential backoff
  (:class:`~coordspine.delivery.RetryEngine`),
- rotate refresh tokens so a replayed token is rejected
  (:class:`~coordspine.auth.RefreshTokenRotator`).

Example:
    >>> from coordspine.core import build_store
    >>> from coordspine.core.settings import get_settings
    >>> from coordspine.scheduling import DistributedLockManager, ExecutionGuard
    >>> settings = get_settings()
    >>> locks = DistributedLockManager(build_store(settings), settings.instance_id)
    >>> guard = ExecutionGuard(locks)
    >>> guard.run("nightly-cleanup", lambda: 0, ttl_seconds=600).executed
    True
"""

__version__ = "0.1.0"
