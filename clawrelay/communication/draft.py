"""Draft message controller for streaming responses.

Manages one Telegram message that is edited in place while the model
streams. Edits are throttled to respect Telegram's edit rate limits, and a
block cursor is shown at the end of the text until the reply is final.
"""

import asyncio
import logging
import time
from typing import Optional

from .formatting import MAX_MESSAGE_LENGTH, markdown_to_telegram_html, split_message, strip_html
from .transport import Transport, is_not_modified

logger = logging.getLogger("clawrelay.draft")

CURSOR = "█"


class DraftMessage:
    """Live reply for one chat: empty → sent → finalized, or → canceled.

    Nothing here raises into the caller. Failed HTML renders are retried
    once as plain text, and anything beyond that is logged.
    """

    def __init__(
        self,
        transport: Transport,
        key: int,
        start_threshold: int = 30,
        edit_interval_ms: int = 1000,
        min_diff_chars: int = 40,
        max_length: int = MAX_MESSAGE_LENGTH,
    ):
        self.transport = transport
        self.key = key
        self.start_threshold = start_threshold
        self.edit_interval = edit_interval_ms / 1000.0
        self.min_diff_chars = min_diff_chars
        self.max_length = max_length

        self._message_id: Optional[int] = None
        self._last_rendered = ""
        self._last_edit_time = 0.0
        self._current_text = ""
        self._timer: Optional[asyncio.TimerHandle] = None
        self._deferred_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def message_id(self) -> Optional[int]:
        return self._message_id

    @property
    def is_sent(self) -> bool:
        return self._message_id is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def text(self) -> str:
        return self._current_text

    # ── Public API ──────────────────────────────────────────

    async def update(self, full_text: str):
        """Show the latest accumulated text (throttled)."""
        if self._closed:
            return
        self._current_text = full_text

        if self._message_id is None:
            if len(full_text) >= self.start_threshold:
                await self._send(full_text)
            return

        elapsed = time.monotonic() - self._last_edit_time
        growth = len(full_text) - len(self._last_rendered)

        if growth < self.min_diff_chars and elapsed < self.edit_interval:
            self._cancel_timer()
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.edit_interval - elapsed, self._fire_deferred)
            return

        self._cancel_timer()
        await self._settle_deferred()
        await self._edit(full_text)

    async def finalize(self, final_text: Optional[str] = None) -> list[str]:
        """Last edit without cursor. Returns HTML chunks that did not fit.

        Returns an empty list when no draft was ever sent; the caller then
        delivers the whole reply itself.
        """
        if self._closed:
            return []
        self._closed = True
        self._cancel_timer()
        await self._settle_deferred()

        if final_text is not None:
            self._current_text = final_text
        if self._message_id is None or not self._current_text:
            return []

        chunks = split_message(markdown_to_telegram_html(self._current_text), self.max_length)
        await self._edit_markup(chunks[0], self._current_text)
        return chunks[1:]

    async def cancel(self):
        """Delete the draft (if any) and discard all state."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        await self._settle_deferred()

        if self._message_id is not None:
            try:
                await self.transport.delete(self.key, self._message_id)
            except Exception as e:
                logger.debug(f"Draft delete failed in chat {self.key}: {e}")
            self._message_id = None
        self._current_text = ""

    # ── Rendering ───────────────────────────────────────────

    def _render(self, text: str, with_cursor: bool) -> str:
        display = text + CURSOR if with_cursor else text
        html = markdown_to_telegram_html(display)
        if len(html) > self.max_length:
            html = split_message(html, self.max_length)[0]
        return html

    async def _send(self, text: str):
        html = self._render(text, with_cursor=True)
        try:
            self._message_id = await self.transport.send(self.key, html, parse_mode="HTML")
        except Exception as e:
            logger.warning(f"HTML draft send failed, trying plain: {e}")
            try:
                self._message_id = await self.transport.send(self.key, strip_html(html))
            except Exception as e2:
                logger.error(f"Draft send failed in chat {self.key}: {e2}")
                return
        self._mark_rendered(text)

    async def _edit(self, text: str, with_cursor: bool = True):
        await self._edit_markup(self._render(text, with_cursor), text)

    async def _edit_markup(self, html: str, text: str):
        if self._message_id is None:
            return
        try:
            await self.transport.edit(self.key, self._message_id, html, parse_mode="HTML")
        except Exception as e:
            if is_not_modified(e):
                self._mark_rendered(text)
                return
            logger.warning(f"HTML draft edit failed, trying plain: {e}")
            try:
                await self.transport.edit(self.key, self._message_id, strip_html(html))
            except Exception as e2:
                if not is_not_modified(e2):
                    logger.warning(f"Draft edit failed in chat {self.key}: {e2}")
                    return
        self._mark_rendered(text)

    def _mark_rendered(self, text: str):
        self._last_rendered = text
        self._last_edit_time = time.monotonic()

    # ── Deferred edit ───────────────────────────────────────

    def _fire_deferred(self):
        self._timer = None
        if self._closed or self._current_text == self._last_rendered:
            return
        self._deferred_task = asyncio.create_task(self._edit(self._current_text))

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _settle_deferred(self):
        """Let an in-flight deferred edit land before the next render."""
        task = self._deferred_task
        self._deferred_task = None
        if task is not None and not task.done():
            await task
