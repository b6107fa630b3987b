"""
Structured error types for coord-spine.

Every failure raised by the coordination core carries a category, an explicit
retry flag, structured context and an optional chained cause, so callers and
alerting can route on type instead of parsing messages.

Manifesto:
    - **Typed hierarchy:** Lock, store, job, delivery and token failures are
      distinct classes
    - **Expected vs exceptional:** ``LockUnavailable`` and the ``InvalidToken``
      family are expected rejections; ``StoreUnavailable`` is a fault
    - **Rich context:** Errors carry lock keys, job names and subjects for logs
    - **Error chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        CoordError (category, retryable, context, cause)
        ├── LockUnavailable           ORCHESTRATION, retryable (skip this tick)
        ├── StoreUnavailable          STORE, retryable (propagate, never assume safety)
        ├── JobExecutionFailed        JOB (recorded, re-raised by the guard)
        ├── DeliveryPermanentFailure  DELIVERY (surfaced for manual triage)
        └── InvalidToken              AUTH ("please re-authenticate")
            ├── TokenExpiredOrMalformed
            ├── TokenAlreadyUsed      theft signal
            └── TokenMismatch         theft signal

Examples:
    >>> err = StoreUnavailable("redis unreachable").with_context(lock_key="nightly")
    >>> err.retryable
    True
    >>> err.to_dict()["context"]
    {'lock_key': 'nightly'}

Tags:
    error-handling, exception-hierarchy, coord-spine, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and alert routing."""

    STORE = "STORE"                  # Coordination store unreachable / timed out
    DATABASE = "DATABASE"            # Durable record store errors
    ORCHESTRATION = "ORCHESTRATION"  # Lock contention, scheduling
    JOB = "JOB"                      # Guarded job body failures
    DELIVERY = "DELIVERY"            # Notification channel failures
    AUTH = "AUTH"                    # Token validation / rotation
    CONFIG = "CONFIG"                # Missing or invalid settings
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging and alerting.

    Attributes:
        job_name: Guarded job the error belongs to
        lock_key: Lock key involved
        owner_id: Instance identity of the caller
        subject_id: Token subject (never the token itself)
        delivery_id: Retryable delivery record id
        metadata: Any additional key-value pairs
    """

    job_name: str | None = None
    lock_key: str | None = None
    owner_id: str | None = None
    subject_id: str | None = None
    delivery_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, skipping unset fields."""
        result: dict[str, Any] = {}
        for key in ["job_name", "lock_key", "owner_id", "subject_id", "delivery_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CoordError(Exception):
    """Base exception for all coord-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override either per instance.

    Example:
        >>> try:
        ...     raise ConnectionError("connection refused")
        ... except ConnectionError as e:
        ...     error = StoreUnavailable("lock store unreachable", cause=e)
        >>> error.cause
        ConnectionError('connection refused')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CoordError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# COORDINATION ERRORS
# =============================================================================


class LockUnavailable(CoordError):
    """The lock is held by another owner. Recoverable: skip this tick."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = True

    def __init__(self, lock_key: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Lock held by another instance: {lock_key}", **kwargs)
        self.lock_key = lock_key
        self.context.lock_key = lock_key


class StoreUnavailable(CoordError):
    """The coordination store could not be reached.

    Lock status is unknown when this is raised: callers must not proceed as if
    they hold, or do not hold, any lock.
    """

    default_category = ErrorCategory.STORE
    default_retryable = True


class JobExecutionFailed(CoordError):
    """A guarded job body raised. Already recorded in the execution history."""

    default_category = ErrorCategory.JOB

    def __init__(self, job_name: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Job failed: {job_name}", **kwargs)
        self.job_name = job_name
        self.context.job_name = job_name


class DeliveryPermanentFailure(CoordError):
    """A delivery exhausted its retries. Terminal, needs manual intervention."""

    default_category = ErrorCategory.DELIVERY

    def __init__(self, delivery_id: str, retry_count: int, message: str | None = None, **kwargs: Any):
        super().__init__(
            message or f"Delivery {delivery_id} permanently failed after {retry_count} retries",
            **kwargs,
        )
        self.delivery_id = delivery_id
        self.retry_count = retry_count
        self.context.delivery_id = delivery_id


# =============================================================================
# TOKEN ERRORS
# =============================================================================


class InvalidToken(CoordError):
    """A refresh token was rejected. User-visible as "please re-authenticate".

    ``theft_signal`` marks the variants worth separate alerting.
    """

    default_category = ErrorCategory.AUTH
    theft_signal: bool = False


class TokenExpiredOrMalformed(InvalidToken):
    """Bad signature, expired, wrong token type or unparseable."""


class TokenAlreadyUsed(InvalidToken):
    """The refresh token was already consumed, or none is stored for the subject."""

    theft_signal = True


class TokenMismatch(InvalidToken):
    """The presented refresh token is not the one currently stored."""

    theft_signal = True


class InvalidTransitionError(ValueError):
    """Raised when a terminal record is mutated again."""

    def __init__(self, current: str, target: str, record_type: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {record_type} transition: {current} → {target}")


__all__ = [
    "CoordError",
    "DeliveryPermanentFailure",
    "ErrorCategory",
    "ErrorContext",
    "InvalidToken",
    "InvalidTransitionError",
    "JobExecutionFailed",
    "LockUnavailable",
    "StoreUnavailable",
    "TokenAlreadyUsed",
    "TokenExpiredOrMalformed",
    "TokenMismatch",
]
