"""Tests for the owner relay registry."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from authpilot.auth import relay
from authpilot.auth.relay import MAX_MESSAGE_LENGTH, TelegramRelay


@pytest.fixture(autouse=True)
def _reset_sender():
    yield
    relay.set_relay_sender(None)


class TestRelay:
    @pytest.mark.asyncio
    async def test_no_sender(self):
        relay.set_relay_sender(None)
        assert await relay.relay("hello") is False

    @pytest.mark.asyncio
    async def test_sender_without_chat_id(self):
        relay.set_relay_sender(AsyncMock())
        assert await relay.relay("hello") is False

    @pytest.mark.asyncio
    async def test_sends_truncated_text(self):
        send = AsyncMock()
        relay.set_relay_sender(send, "12345")
        assert await relay.relay("x" * (MAX_MESSAGE_LENGTH + 10)) is True
        chat_id, text = send.call_args.args
        assert chat_id == "12345"
        assert len(text) == MAX_MESSAGE_LENGTH

    @pytest.mark.asyncio
    async def test_send_error_is_swallowed(self):
        relay.set_relay_sender(AsyncMock(side_effect=RuntimeError("down")), "1")
        assert await relay.relay("hello") is False


class TestTelegramRelay:
    @pytest.mark.asyncio
    async def test_registers_and_sends(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        bot.session.close = AsyncMock()
        with patch("authpilot.auth.relay.Bot", return_value=bot):
            tg = TelegramRelay("123:abc", "42")

        assert relay.get_relay_sender() == tg.send_message
        assert await relay.relay("CAPTCHA on github.com") is True
        bot.send_message.assert_awaited_once_with(
            chat_id=42, text="CAPTCHA on github.com", parse_mode=None
        )

        await tg.close()
        bot.session.close.assert_awaited_once()
        assert relay.get_relay_sender() is None
