"""Delivery channels consumed by the retry engine.

A channel is anything with ``send(address, payload) -> bool``. Concrete
provider SDKs (SMTP, SMS gateways, push services) live outside this package;
the engine only needs the boolean outcome, and treats a raised exception the
same as ``False``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class DeliveryChannel(Protocol):
    """Sends one message to one address."""

    def send(self, address: str, payload: str) -> bool:
        """Return True on delivery. May raise on transport failure."""
        ...


class CallableChannel:
    """Adapts a plain function to :class:`DeliveryChannel`.

    A function returning None counts as delivered, matching senders that
    signal failure only by raising.

    Example:
        >>> channels = {ChannelType.EMAIL: CallableChannel(smtp_send, name="smtp")}
    """

    def __init__(self, fn: Callable[[str, str], bool | None], name: str | None = None) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__name__", "callable")

    def send(self, address: str, payload: str) -> bool:
        result = self._fn(address, payload)
        return True if result is None else bool(result)

    def __repr__(self) -> str:
        return f"CallableChannel({self.name!r})"


__all__ = ["CallableChannel", "DeliveryChannel"]
