"""Core primitives: errors, logging, settings, the coordination store and durable schema."""

from coordspine.core.errors import (
    CoordError,
    DeliveryPermanentFailure,
    ErrorCategory,
    ErrorContext,
    InvalidToken,
    InvalidTransitionError,
    JobExecutionFailed,
    LockUnavailable,
    StoreUnavailable,
    TokenAlreadyUsed,
    TokenExpiredOrMalformed,
    TokenMismatch,
)
from coordspine.core.schema import create_tables
from coordspine.core.store import (
    CoordinationStore,
    InMemoryCoordinationStore,
    RedisCoordinationStore,
    build_store,
)

__all__ = [
    "CoordError",
    "CoordinationStore",
    "DeliveryPermanentFailure",
    "ErrorCategory",
    "ErrorContext",
    "InMemoryCoordinationStore",
    "InvalidToken",
    "InvalidTransitionError",
    "JobExecutionFailed",
    "LockUnavailable",
    "RedisCoordinationStore",
    "StoreUnavailable",
    "TokenAlreadyUsed",
    "TokenExpiredOrMalformed",
    "TokenMismatch",
    "build_store",
    "create_tables",
]
