"""Delivery data models.

Row-level model for the retry queue plus the value objects returned by a
sweep and by the monitoring queries.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from coordspine.core.errors import DeliveryPermanentFailure, InvalidTransitionError
from coordspine.core.timestamps import to_iso8601, utc_now


class ChannelType(str, Enum):
    """Outbound notification channel."""

    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class DeliveryStatus(str, Enum):
    """Lifecycle of a retryable delivery.

    PENDING ──sweep──► RETRYING ──ok──► SUCCEEDED
       ▲                  │
       └──── fail, retries left
                          └── fail, retries exhausted ──► FAILED
    """

    PENDING = "PENDING"
    RETRYING = "RETRYING"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.FAILED, DeliveryStatus.SUCCEEDED)


@dataclass
class RetryableDelivery:
    """A failed outbound notification awaiting retry.

    Attributes:
        channel_type: Channel to retry through
        recipient_ref: Opaque recipient id (e.g. user id), may be None
        recipient_address: Email address, phone number or device token
        payload: Message content
        last_error: Most recent failure message
        retry_count: Attempts made by the sweep so far (0..max_retries)
        next_retry_at: Earliest time the sweep may pick this up
    """

    channel_type: ChannelType
    recipient_address: str
    payload: str
    recipient_ref: str | None = None
    last_error: str | None = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    last_retry_at: datetime | None = None
    succeeded_at: datetime | None = None

    @property
    def retries_remaining(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    def begin_attempt(self, now: datetime) -> None:
        """Count an attempt and mark the delivery in flight."""
        if self.status.is_terminal:
            raise InvalidTransitionError(self.status.value, DeliveryStatus.RETRYING.value, "Delivery")
        self.retry_count += 1
        self.last_retry_at = now
        self.status = DeliveryStatus.RETRYING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_type": self.channel_type.value,
            "recipient_ref": self.recipient_ref,
            "recipient_address": self.recipient_address,
            "last_error": self.last_error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": to_iso8601(self.next_retry_at),
            "status": self.status.value,
            "created_at": to_iso8601(self.created_at),
            "last_retry_at": to_iso8601(self.last_retry_at),
            "succeeded_at": to_iso8601(self.succeeded_at),
        }


@dataclass
class SweepResult:
    """Outcome of one :meth:`RetryEngine.sweep`."""

    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0
    errors: int = 0
    permanent_failures: list[DeliveryPermanentFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "rescheduled": self.rescheduled,
            "failed": self.failed,
            "errors": self.errors,
            "permanent_failures": [e.delivery_id for e in self.permanent_failures],
        }


@dataclass(frozen=True)
class DeliveryStats:
    """Counts by status for deliveries created in a window."""

    pending: int = 0
    retrying: int = 0
    failed: int = 0
    succeeded: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.retrying + self.failed + self.succeeded

    @property
    def success_rate(self) -> float | None:
        """Share of finished deliveries that succeeded, None if none finished."""
        finished = self.succeeded + self.failed
        return self.succeeded / finished if finished else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "retrying": self.retrying,
            "failed": self.failed,
            "succeeded": self.succeeded,
            "total": self.total,
            "success_rate": self.success_rate,
        }
