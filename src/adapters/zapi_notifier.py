"""WhatsApp notification adapter over Z-API — implements NotificationPort.

POST /instances/{instance}/token/{token}/send-text with the account's
Client-Token header. The returned ``messageId`` is the delivery id.
"""

from __future__ import annotations

import logging

import httpx

from src.ports.notification_port import DeliveryResult

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.z-api.io"


class ZapiNotifier:
    """Z-API (WhatsApp) implementation of NotificationPort."""

    def __init__(self, instance_id: str, token: str, client_token: str, timeout: float = 10.0) -> None:
        self._url = f"{_BASE_URL}/instances/{instance_id}/token/{token}/send-text"
        self._headers = {"Client-Token": client_token, "Content-Type": "application/json"}
        self._timeout = timeout

    async def send_message(self, handle: str, text: str) -> DeliveryResult:
        payload = {"phone": handle, "message": text}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Z-API send to %s failed: %s", handle, exc)
            return DeliveryResult(ok=False, error=str(exc))

        message_id = data.get("messageId") or data.get("zaapId")
        if not message_id:
            logger.warning("Z-API response without messageId: %s", data)
            return DeliveryResult(ok=False, error="missing messageId")
        return DeliveryResult(ok=True, delivery_id=str(message_id))
