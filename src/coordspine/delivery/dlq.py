"""Retry / dead-letter engine for outbound notifications.

WHY
───
A notification that fails to send (SMTP timeout, SMS gateway 5xx, push
token rejected) should neither vanish nor be hammered in a tight loop. The
engine records the failure, retries it on an exponential schedule, and
parks it as FAILED for manual triage once the retry budget is spent.

ARCHITECTURE
────────────
::

    RetryEngine(repository, channels)
      ├── .enqueue(channel_type, ref, address, payload, error) ─ PENDING, due in backoff(0)
      ├── .sweep()                 ─ retry every due delivery once
      ├── .run_sweep(guard)        ─ sweep as guarded job "process-dlq"
      ├── .backoff(n)              ─ base_delay * factor ** n  (5m, 15m, 45m)
      ├── .stats(hours)            ─ counts by status
      └── .recent_failures(hours)  ─ permanently failed deliveries

    Timeline with defaults (enqueued at t0):
      t0+5m   attempt 1 ─ fail ─► PENDING, next +15m
      t0+20m  attempt 2 ─ fail ─► PENDING, next +45m
      t0+65m  attempt 3 ─ fail ─► FAILED (DeliveryPermanentFailure logged)

The sweep is not concurrency-safe on its own: two instances sweeping at once
would retry the same rows. Run it through :meth:`RetryEngine.run_sweep` (or
any ExecutionGuard) so only one instance sweeps at a time.

Example::

    engine = RetryEngine(DeliveryRepository(conn), {ChannelType.SMS: sms_channel})
    engine.enqueue(ChannelType.SMS, "user-42", "+15550100", "Your code is 1234", "gateway timeout")
    engine.run_sweep(guard)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from coordspine.core.errors import DeliveryPermanentFailure
from coordspine.core.logging import get_logger
from coordspine.core.timestamps import utc_now
from coordspine.delivery.channels import DeliveryChannel
from coordspine.delivery.models import (
    ChannelType,
    DeliveryStats,
    DeliveryStatus,
    RetryableDelivery,
    SweepResult,
)
from coordspine.delivery.repository import DeliveryRepository
from coordspine.scheduling.guard import ExecutionGuard, GuardedRun, JobResult

logger = get_logger(__name__)

SWEEP_JOB_NAME = "process-dlq"
SWEEP_JOB_GROUP = "notification"


class RetryEngine:
    """Records failed deliveries and retries them with exponential backoff."""

    def __init__(
        self,
        repository: DeliveryRepository,
        channels: Mapping[ChannelType, DeliveryChannel],
        *,
        max_retries: int = 3,
        base_delay: timedelta = timedelta(minutes=5),
        backoff_factor: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Durable storage for deliveries
            channels: Channel per ChannelType; a missing channel fails the attempt
            max_retries: Attempts before a delivery is parked as FAILED
            base_delay: Delay before the first retry
            backoff_factor: Multiplier applied per attempt
            clock: Source of "now" (UTC)
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.repository = repository
        self.channels = dict(channels)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self._clock = clock

    def backoff(self, retry_count: int) -> timedelta:
        """Delay before the next attempt after ``retry_count`` attempts."""
        return self.base_delay * (self.backoff_factor**retry_count)

    def enqueue(
        self,
        channel_type: ChannelType | str,
        recipient_ref: str | None,
        recipient_address: str,
        payload: str,
        error_message: str | None,
        *,
        max_retries: int | None = None,
    ) -> RetryableDelivery:
        """Record a failed send for later retry.

        Returns:
            The PENDING delivery, due at ``now + backoff(0)``

        Raises:
            ValueError: ``max_retries`` is given and below 1.
        """
        if max_retries is None:
            max_retries = self.max_retries
        elif max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        now = self._clock()
        delivery = RetryableDelivery(
            channel_type=ChannelType(channel_type),
            recipient_ref=recipient_ref,
            recipient_address=recipient_address,
            payload=payload,
            last_error=error_message,
            max_retries=max_retries,
            next_retry_at=now + self.backoff(0),
            created_at=now,
        )
        self.repository.save(delivery)
        logger.warning(
            "delivery_enqueued",
            delivery_id=delivery.id,
            channel_type=delivery.channel_type.value,
            recipient_ref=recipient_ref,
            error=error_message,
        )
        return delivery

    def sweep(self) -> SweepResult:
        """Retry every delivery that is due, once.

        A failure handling one delivery (including a persistence error) is
        logged and counted in ``errors``; the remaining deliveries are still
        processed.
        """
        now = self._clock()
        due = self.repository.find_due(now)
        result = SweepResult()
        if not due:
            logger.debug("dlq_sweep_empty")
            return result

        logger.info("dlq_sweep_started", due=len(due))
        for delivery in due:
            result.processed += 1
            try:
                self._retry(delivery, now, result)
            except Exception as e:
                result.errors += 1
                logger.exception("delivery_retry_error", delivery_id=delivery.id, error=str(e))

        logger.info("dlq_sweep_completed", **{k: v for k, v in result.to_dict().items() if k != "permanent_failures"})
        return result

    def _retry(self, delivery: RetryableDelivery, now: datetime, result: SweepResult) -> None:
        delivery.begin_attempt(now)

        if self._attempt(delivery):
            delivery.status = DeliveryStatus.SUCCEEDED
            delivery.succeeded_at = now
            self.repository.save(delivery)
            result.succeeded += 1
            logger.info(
                "delivery_retry_succeeded",
                delivery_id=delivery.id,
                channel_type=delivery.channel_type.value,
                attempts=delivery.retry_count,
            )
            return

        if delivery.retry_count >= delivery.max_retries:
            delivery.status = DeliveryStatus.FAILED
            self.repository.save(delivery)
            failure = DeliveryPermanentFailure(delivery.id, delivery.retry_count).with_context(
                channel_type=delivery.channel_type.value,
                recipient_ref=delivery.recipient_ref,
            )
            result.failed += 1
            result.permanent_failures.append(failure)
            logger.error("delivery_permanently_failed", **failure.to_dict())
            return

        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = now + self.backoff(delivery.retry_count)
        self.repository.save(delivery)
        result.rescheduled += 1
        logger.warning(
            "delivery_retry_failed",
            delivery_id=delivery.id,
            attempts=delivery.retry_count,
            next_retry_at=delivery.next_retry_at.isoformat(),
            error=delivery.last_error,
        )

    def _attempt(self, delivery: RetryableDelivery) -> bool:
        channel = self.channels.get(delivery.channel_type)
        if channel is None:
            delivery.last_error = f"No channel registered for {delivery.channel_type.value}"
            logger.error("delivery_channel_missing", delivery_id=delivery.id, channel_type=delivery.channel_type.value)
            return False
        try:
            sent = channel.send(delivery.recipient_address, delivery.payload)
        except Exception as e:
            delivery.last_error = str(e) or e.__class__.__name__
            return False
        if not sent:
            delivery.last_error = "Channel reported failure"
        return bool(sent)

    def run_sweep(self, guard: ExecutionGuard, *, ttl_seconds: float = 300) -> GuardedRun:
        """Run :meth:`sweep` as the guarded job ``process-dlq``.

        Returns:
            The guard's GuardedRun; when executed, ``result`` carries the
            sweep message and the number of deliveries processed.
        """
        def _job() -> JobResult:
            swept = self.sweep()
            return JobResult(
                f"Processed {swept.processed} deliveries "
                f"({swept.succeeded} succeeded, {swept.rescheduled} rescheduled, {swept.failed} failed)",
                swept.processed,
            )

        return guard.run(SWEEP_JOB_NAME, _job, ttl_seconds=ttl_seconds, job_group=SWEEP_JOB_GROUP)

    def stats(self, hours: int = 24) -> DeliveryStats:
        """Counts by status for deliveries created in the last ``hours``."""
        counts = self.repository.count_by_status(self._clock() - timedelta(hours=hours))
        return DeliveryStats(
            pending=counts[DeliveryStatus.PENDING],
            retrying=counts[DeliveryStatus.RETRYING],
            failed=counts[DeliveryStatus.FAILED],
            succeeded=counts[DeliveryStatus.SUCCEEDED],
        )

    def recent_failures(self, hours: int = 24, limit: int = 100) -> list[RetryableDelivery]:
        """Permanently failed deliveries created in the last ``hours``."""
        return self.repository.list_failed_since(self._clock() - timedelta(hours=hours), limit=limit)


__all__ = ["RetryEngine", "SWEEP_JOB_GROUP", "SWEEP_JOB_NAME"]
