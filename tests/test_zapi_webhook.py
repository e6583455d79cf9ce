"""Tests for src.bot.zapi_webhook — Z-API read receipts."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import NOW, OWNER
from src.bot.zapi_webhook import apply_status_update, read_receipt_id, status_webhook_handler
from src.core.timeutils import to_iso
from src.data.models import EventKind


def _sent_row(store, delivery_id="3EB0ABC"):
    event = store.events.add_event(OWNER, EventKind.APPOINTMENT, "Dentista", to_iso(NOW))
    store.sent.record_sent(event.id, OWNER, "1h", to_iso(NOW), delivery_id)
    return event


def _read_at(store, delivery_id="3EB0ABC"):
    return store.sent.find_by_delivery_id(delivery_id).read_at


def _make_request(store, payload, token=""):
    request = MagicMock()
    request.app = {"store": store}
    request.query = {"token": token} if token else {}
    request.json = AsyncMock(return_value=payload)
    return request


class TestReadReceiptId:
    def test_read_callback(self):
        assert read_receipt_id({"type": "MessageStatusCallback", "status": "READ", "ids": ["3EB0ABC"]}) == "3EB0ABC"

    def test_message_id_variants(self):
        assert read_receipt_id({"status": "read", "messageId": "A1"}) == "A1"
        assert read_receipt_id({"event": "message-status-update", "status": "READ", "id": "B2"}) == "B2"
        assert read_receipt_id({"status": "READ", "key": {"id": "C3"}}) == "C3"

    def test_other_statuses_ignored(self):
        assert read_receipt_id({"status": "DELIVERED", "messageId": "A1"}) is None
        assert read_receipt_id({"status": "PLAYED", "messageId": "A1"}) is None

    def test_inbound_message_is_not_a_status_update(self):
        payload = {"status": "READ", "messageId": "A1", "text": {"message": "feito"}}
        assert read_receipt_id(payload) is None


class TestApplyStatusUpdate:
    def test_read_stamps_sent_row(self, store):
        _sent_row(store)
        assert apply_status_update(store, {"status": "READ", "messageId": "3EB0ABC"}, to_iso(NOW)) is True
        assert _read_at(store) == to_iso(NOW)

    def test_delivered_leaves_row_unread(self, store):
        _sent_row(store)
        assert apply_status_update(store, {"status": "DELIVERED", "messageId": "3EB0ABC"}) is False
        assert _read_at(store) is None

    def test_unknown_message_id(self, store):
        assert apply_status_update(store, {"status": "READ", "messageId": "nope"}) is False


class TestHandler:
    @pytest.mark.asyncio
    async def test_read_update_is_stored(self, store):
        _sent_row(store)
        response = await status_webhook_handler(_make_request(store, {"status": "READ", "messageId": "3EB0ABC"}))
        assert response.status == 200
        assert _read_at(store) is not None

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, store):
        _sent_row(store)
        with patch("src.bot.zapi_webhook.settings") as mock_settings:
            mock_settings.ZAPI_WEBHOOK_TOKEN = "segredo"
            response = await status_webhook_handler(
                _make_request(store, {"status": "READ", "messageId": "3EB0ABC"}, token="errado"),
            )
        assert response.status == 401
        assert _read_at(store) is None

    @pytest.mark.asyncio
    async def test_right_token_accepted(self, store):
        _sent_row(store)
        with patch("src.bot.zapi_webhook.settings") as mock_settings:
            mock_settings.ZAPI_WEBHOOK_TOKEN = "segredo"
            response = await status_webhook_handler(
                _make_request(store, {"status": "READ", "messageId": "3EB0ABC"}, token="segredo"),
            )
        assert response.status == 200
        assert _read_at(store) is not None

    @pytest.mark.asyncio
    async def test_non_object_body_rejected(self, store):
        response = await status_webhook_handler(_make_request(store, ["READ"]))
        assert response.status == 400
