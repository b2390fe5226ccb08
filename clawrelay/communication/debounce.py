"""Inbound message debouncer.

People often send one thought as several quick messages. The debouncer
buffers rapid fragments from the same chat for a short window and hands
them on as a single turn.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Hashable, Optional

logger = logging.getLogger("clawrelay.debounce")


@dataclass
class _PendingBuffer:
    fragments: list[str]
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = field(default=None)


class Debouncer:
    """Merge rapid consecutive messages per conversation key.

    - First call for a key: waits until the window closes, then returns the
      combined text (fragments joined with newlines, in arrival order).
    - Later calls inside the window: append the text, restart the window and
      return None right away. The caller should stop there; the first
      caller carries the combined payload.
    """

    def __init__(self, enabled: bool = True, window_ms: int = 1500):
        self.enabled = enabled
        self.window = window_ms / 1000.0
        self._pending: dict[Hashable, _PendingBuffer] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    async def debounce(self, key: Hashable, text: str) -> Optional[str]:
        if not self.enabled:
            return text

        loop = asyncio.get_running_loop()
        existing = self._pending.get(key)

        if existing is not None:
            existing.fragments.append(text)
            existing.timer.cancel()
            existing.timer = loop.call_later(self.window, self._flush, key)
            logger.debug(f"Buffered fragment for chat {key} ({len(existing.fragments)} total)")
            return None

        entry = _PendingBuffer(fragments=[text], future=loop.create_future())
        entry.timer = loop.call_later(self.window, self._flush, key)
        self._pending[key] = entry
        logger.debug(f"Started debounce window for chat {key}")

        return await entry.future

    def _flush(self, key: Hashable):
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        combined = "\n".join(entry.fragments)
        logger.debug(f"Flushed {len(entry.fragments)} fragment(s) for chat {key}")
        if not entry.future.done():
            entry.future.set_result(combined)
