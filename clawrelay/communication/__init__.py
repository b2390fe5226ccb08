"""Communication sub-core — everything between an inbound message and a delivered reply.

- Debounce: merge rapid fragments into one turn
- Chat lock: one turn at a time per chat
- Draft: live, throttled reply message while the model streams
- Formatting: markdown → Telegram HTML, size-safe splitting, delivery
- Pipeline: wires the above together
"""

from .chat_lock import ChatLock
from .debounce import Debouncer
from .draft import CURSOR, DraftMessage
from .formatting import (
    MAX_MESSAGE_LENGTH,
    markdown_to_telegram_html,
    send_chunks,
    send_formatted,
    split_message,
    strip_html,
)
from .pipeline import RelayPipeline

__all__ = [
    "ChatLock",
    "Debouncer",
    "CURSOR",
    "DraftMessage",
    "MAX_MESSAGE_LENGTH",
    "markdown_to_telegram_html",
    "send_chunks",
    "send_formatted",
    "split_message",
    "strip_html",
    "RelayPipeline",
]
