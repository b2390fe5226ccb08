"""Outbound chat transport — the send/edit/delete calls the core relies on."""

import logging
from typing import Optional, Protocol

from telegram import Bot, ReactionTypeEmoji
from telegram.constants import ChatAction

from .formatting import MAX_MESSAGE_LENGTH

logger = logging.getLogger("clawrelay.transport")

__all__ = ["Transport", "TelegramTransport", "is_not_modified", "MAX_MESSAGE_LENGTH"]


class Transport(Protocol):
    """Chat surface operations. Any of them may raise."""

    async def send(self, key: int, text: str, parse_mode: Optional[str] = None) -> int:
        """Send a message and return its message ID."""
        ...

    async def edit(self, key: int, message_id: int, text: str, parse_mode: Optional[str] = None):
        ...

    async def delete(self, key: int, message_id: int):
        ...

    async def send_typing(self, key: int):
        ...

    async def react(self, key: int, message_id: int, emoji: str):
        """Set a single emoji reaction on a message."""
        ...


def is_not_modified(error: Exception) -> bool:
    """True if an edit was rejected only because the content did not change."""
    return "message is not modified" in str(error).lower()


class TelegramTransport:
    """Transport backed by a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, key: int, text: str, parse_mode: Optional[str] = None) -> int:
        msg = await self.bot.send_message(chat_id=key, text=text, parse_mode=parse_mode)
        return msg.message_id

    async def edit(self, key: int, message_id: int, text: str, parse_mode: Optional[str] = None):
        await self.bot.edit_message_text(
            chat_id=key,
            message_id=message_id,
            text=text,
            parse_mode=parse_mode,
        )

    async def delete(self, key: int, message_id: int):
        await self.bot.delete_message(chat_id=key, message_id=message_id)

    async def send_typing(self, key: int):
        await self.bot.send_chat_action(chat_id=key, action=ChatAction.TYPING)

    async def react(self, key: int, message_id: int, emoji: str):
        await self.bot.set_message_reaction(
            chat_id=key,
            message_id=message_id,
            reaction=[ReactionTypeEmoji(emoji=emoji)],
        )
