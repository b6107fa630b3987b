"""Reliable outbound delivery: a retry queue with exponential backoff and
pluggable channels.

Tags:
    coord-spine, delivery, dead-letter-queue, retry, notification
"""

from coordspine.delivery.channels import CallableChannel, DeliveryChannel
from coordspine.delivery.dlq import SWEEP_JOB_GROUP, SWEEP_JOB_NAME, RetryEngine
from coordspine.delivery.models import (
    ChannelType,
    DeliveryStats,
    DeliveryStatus,
    RetryableDelivery,
    SweepResult,
)
from coordspine.delivery.repository import DeliveryRepository

__all__ = [
    "CallableChannel",
    "ChannelType",
    "DeliveryChannel",
    "DeliveryRepository",
    "DeliveryStats",
    "DeliveryStatus",
    "RetryEngine",
    "RetryableDelivery",
    "SWEEP_JOB_GROUP",
    "SWEEP_JOB_NAME",
    "SweepResult",
]
