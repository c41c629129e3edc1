"""
Owner relay: forwards human-in-the-loop alerts to a chat channel.

A relay is any async ``send(chat_id, text)`` callable registered with
``set_relay_sender``. ``TelegramRelay`` registers itself on construction.
When no sender is registered, relaying is a logged no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

RelaySender = Callable[[str, str], Awaitable[None]]

_relay_send: RelaySender | None = None
_relay_chat_id: str = ""


def set_relay_sender(send_func: RelaySender | None, chat_id: str = "") -> None:
    """Register the relay send function and its default chat."""
    global _relay_send, _relay_chat_id
    _relay_send = send_func
    _relay_chat_id = chat_id


def get_relay_sender() -> RelaySender | None:
    return _relay_send


async def relay(text: str) -> bool:
    """Send text to the registered relay. Returns True if it was sent."""
    if _relay_send is None:
        logger.debug("No relay sender registered, skipping")
        return False
    if not _relay_chat_id:
        logger.warning("Relay sender registered without a chat id")
        return False
    try:
        await _relay_send(_relay_chat_id, text[:MAX_MESSAGE_LENGTH])
        return True
    except Exception as e:
        logger.error("Relay delivery failed: %s", e)
        return False


class TelegramRelay:
    """Minimal aiogram sender used for owner alerts."""

    def __init__(self, bot_token: str, chat_id: str) -> None:
        self.chat_id = chat_id
        self.bot = Bot(
            token=bot_token,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )
        set_relay_sender(self.send_message, chat_id)

    async def send_message(self, chat_id: str, text: str) -> None:
        if not text:
            return
        await self.bot.send_message(chat_id=int(chat_id), text=text, parse_mode=None)

    async def close(self) -> None:
        await self.bot.session.close()
        if get_relay_sender() == self.send_message:
            set_relay_sender(None)
