"""Tests for the outbound transport adapters and their factory."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from telegram.error import BadRequest, NetworkError

from src.adapters.notifier_factory import create_notifier
from src.adapters.telegram_notifier import TelegramNotifier
from src.adapters.zapi_notifier import ZapiNotifier


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_message_id_is_delivery_id(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(return_value=MagicMock(message_id=321))

        result = await TelegramNotifier(bot).send_message("12345", "⏰ Em 1h: *Dentista*")

        assert result.ok is True
        assert result.delivery_id == "321"
        bot.send_message.assert_awaited_once_with(chat_id=12345, text="⏰ Em 1h: *Dentista*", parse_mode="Markdown")

    @pytest.mark.asyncio
    async def test_markdown_rejected_falls_back_to_plain(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=[BadRequest("Can't parse entities"), MagicMock(message_id=5)])

        result = await TelegramNotifier(bot).send_message("12345", "dentista_*")
        assert result.delivery_id == "5"
        assert "parse_mode" not in bot.send_message.call_args.kwargs

    @pytest.mark.asyncio
    async def test_transport_error_is_reported_not_raised(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=NetworkError("down"))

        result = await TelegramNotifier(bot).send_message("12345", "oi")
        assert result.ok is False
        assert "down" in result.error


def _mock_client(payload=None, error=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.post = AsyncMock(side_effect=error)
    else:
        mock_client.post = AsyncMock(return_value=mock_resp)
    return mock_client


class TestZapiNotifier:
    @pytest.mark.asyncio
    async def test_posts_send_text(self):
        client = _mock_client({"zaapId": "z1", "messageId": "ABC123"})
        with patch("src.adapters.zapi_notifier.httpx.AsyncClient", return_value=client):
            result = await ZapiNotifier("inst", "tok", "client-tok").send_message("5511999999999", "oi")

        assert result.ok is True
        assert result.delivery_id == "ABC123"
        args, kwargs = client.post.call_args
        assert args[0] == "https://api.z-api.io/instances/inst/token/tok/send-text"
        assert kwargs["json"] == {"phone": "5511999999999", "message": "oi"}
        assert kwargs["headers"]["Client-Token"] == "client-tok"

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self):
        client = _mock_client(error=httpx.ConnectError("refused"))
        with patch("src.adapters.zapi_notifier.httpx.AsyncClient", return_value=client):
            result = await ZapiNotifier("inst", "tok", "c").send_message("55", "oi")
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_missing_message_id(self):
        client = _mock_client({"error": "instance disconnected"})
        with patch("src.adapters.zapi_notifier.httpx.AsyncClient", return_value=client):
            result = await ZapiNotifier("inst", "tok", "c").send_message("55", "oi")
        assert result.ok is False


class TestFactory:
    def test_telegram_default(self):
        assert isinstance(create_notifier(MagicMock()), TelegramNotifier)

    def test_telegram_needs_bot(self):
        with pytest.raises(ValueError):
            create_notifier(None)

    def test_zapi(self):
        with patch("src.adapters.notifier_factory.settings") as s:
            s.MESSAGING_PROVIDER = "zapi"
            s.ZAPI_INSTANCE_ID = "inst"
            s.ZAPI_TOKEN = "tok"
            s.ZAPI_CLIENT_TOKEN = "c"
            assert isinstance(create_notifier(), ZapiNotifier)

    def test_unknown_provider(self):
        with patch("src.adapters.notifier_factory.settings") as s:
            s.MESSAGING_PROVIDER = "pombo"
            with pytest.raises(ValueError):
                create_notifier()
