"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
Adapters never raise on transport errors: they return a failed DeliveryResult.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class DeliveryResult:
    """Outcome of one send; delivery_id is the provider's message id."""

    ok: bool
    delivery_id: str | None = None
    error: str | None = None


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, handle: str, text: str) -> DeliveryResult: ...
