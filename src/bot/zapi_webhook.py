"""
Lembra Assistant — Z-API status webhook.

When outbound messages go through WhatsApp, Z-API reports delivery state
changes by POSTing to this endpoint. Only READ is stored: it stamps the
matching sent-reminder row so the anti-spam gate sees the user read it.

Inbound WhatsApp messages are not handled here; chat still happens on
Telegram, so quoted replies to WhatsApp reminders are not resolved.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from src.config import settings
from src.core.timeutils import now_brt, to_iso

if TYPE_CHECKING:
    from src.data.db import Store

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook/zapi/status"
STATUS_EVENTS = {"message-status-update", "MessageStatusCallback"}
STATUS_VALUES = {"READ", "DELIVERED", "SENT", "PLAYED", "RECEIVED"}
CONTENT_KEYS = ("text", "audio", "image")


def read_receipt_id(payload: dict[str, Any]) -> str | None:
    """Message id of a READ status update; None for anything else.

    Content messages can carry a status too ("RECEIVED"), so a payload
    with text, audio or image is never a status update.
    """
    status = str(payload.get("status") or "").upper()
    is_status_update = (
        payload.get("type") in STATUS_EVENTS
        or payload.get("event") in STATUS_EVENTS
        or (status in STATUS_VALUES and not any(payload.get(key) for key in CONTENT_KEYS))
    )
    if not is_status_update or status != "READ":
        return None

    ids = payload.get("ids") or []
    message_id = payload.get("messageId") or payload.get("id") or (payload.get("key") or {}).get("id")
    if not message_id and ids:
        message_id = ids[0]
    return str(message_id) if message_id else None


def apply_status_update(store: Store, payload: dict[str, Any], read_at: str | None = None) -> bool:
    """Stamp the read receipt carried by *payload*. Returns True when a row was marked."""
    message_id = read_receipt_id(payload)
    if message_id is None:
        return False
    return store.sent.mark_read(message_id, read_at or to_iso(now_brt()))


async def status_webhook_handler(request: web.Request) -> web.Response:
    """Handle Z-API status POSTs."""
    expected = settings.ZAPI_WEBHOOK_TOKEN
    if expected:
        token = request.query.get("token", "")
        if not hmac.compare_digest(token, expected):
            logger.warning("Status webhook call with invalid token")
            return web.Response(status=401, text="Unauthorized")

    try:
        payload = await request.json()
    except ValueError:
        return web.Response(status=400, text="Invalid JSON")
    if not isinstance(payload, dict):
        return web.Response(status=400, text="Invalid payload")

    store: Store = request.app["store"]
    marked = apply_status_update(store, payload)
    return web.json_response({"ok": True, "marked": marked})


async def start_status_server(store: Store, port: int) -> web.AppRunner:
    """Start the HTTP server for Z-API status callbacks.

    Args:
        store: Persistence bundle, shared with the bot.
        port: Port to listen on.

    Returns:
        AppRunner instance; call cleanup() on shutdown.
    """
    app = web.Application()
    app["store"] = store
    app.router.add_post(WEBHOOK_PATH, status_webhook_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    logger.info("Z-API status webhook listening on port %d", port)
    return runner
