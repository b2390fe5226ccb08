"""Relay pipeline — inbound text to a delivered reply.

inbound fragment → Debouncer → ChatLock → LLM (streamed into a DraftMessage)
→ parse_output → Message: finalize draft (+ overflow chunks)
               → DirectiveCall: cancel draft, execute, deliver result
"""

import functools
import logging
from typing import Optional

from ..actions.registry import ActionExecutor
from ..config import RelaySettings
from ..llm.claude_cli import build_prompt
from ..llm.protocol import DirectiveCall, Message, ParsedResult, parse_output
from ..llm.provider import LLMRunner
from .chat_lock import ChatLock
from .debounce import Debouncer
from .draft import DraftMessage
from .formatting import MAX_MESSAGE_LENGTH, send_chunks, send_formatted
from .transport import Transport

logger = logging.getLogger("clawrelay.pipeline")

REACTION_ACK = "👀"
REACTION_DONE = "✅"
REACTION_ERROR = "❌"


class RelayPipeline:
    """Owns all per-chat state: debounce buffers, task queues, session IDs."""

    def __init__(
        self,
        settings: RelaySettings,
        llm: LLMRunner,
        executor: ActionExecutor,
        transport: Transport,
    ):
        self.settings = settings
        self.llm = llm
        self.executor = executor
        self.transport = transport
        self.debouncer = Debouncer(settings.debounce_enabled, settings.debounce_ms)
        self.lock = ChatLock()
        self._sessions: dict[int, str] = {}

    # ── Sessions ────────────────────────────────────────────

    def get_session(self, key: int) -> Optional[str]:
        return self._sessions.get(key)

    def clear_session(self, key: int):
        self._sessions.pop(key, None)

    def _save_session(self, key: int, result: ParsedResult):
        if result.session_id:
            self._sessions[key] = result.session_id
            logger.debug(f"Session saved for chat {key}: {result.session_id}")

    # ── Entry point ─────────────────────────────────────────

    async def handle_text(self, key: int, text: str, message_id: Optional[int] = None):
        """Debounce, then queue one turn for the chat.

        ``message_id`` is the inbound message that gets the status reactions;
        when fragments are merged it is the one that opened the window.
        """
        combined = await self.debouncer.debounce(key, text)
        if combined is None:
            logger.debug(f"Message buffered by debouncer for chat {key}")
            return
        self.lock.enqueue(key, functools.partial(self.process_turn, key, combined, message_id))

    async def process_turn(self, key: int, text: str, message_id: Optional[int] = None):
        """Run one turn end to end. Called under the chat lock."""
        await self._react(key, message_id, REACTION_ACK)
        try:
            await self._turn(key, text)
        except Exception:
            await self._react(key, message_id, REACTION_ERROR)
            raise
        await self._react(key, message_id, REACTION_DONE)

    async def _turn(self, key: int, text: str):
        try:
            await self.transport.send_typing(key)
        except Exception:
            pass  # typing is best-effort

        if self.settings.streaming_enabled:
            draft = self._new_draft(key)
            result = await self._ask_streaming(key, text, draft)
        else:
            draft = None
            result = parse_output(await self._ask(key, text))
            self._save_session(key, result)

        if isinstance(result, Message):
            await self._deliver_message(key, result.text, draft)
            return

        if draft is not None:
            await draft.cancel()
        reply = await self._run_directive(key, result)
        await self._deliver_message(key, reply, None)

    # ── LLM calls ───────────────────────────────────────────

    def _new_draft(self, key: int) -> DraftMessage:
        return DraftMessage(
            self.transport,
            key,
            start_threshold=self.settings.draft_start_threshold,
            edit_interval_ms=self.settings.draft_edit_interval_ms,
            min_diff_chars=self.settings.draft_min_diff_chars,
            max_length=MAX_MESSAGE_LENGTH,
        )

    def _prompt(self, key: int, text: str) -> str:
        return build_prompt(
            key,
            text,
            resume=self.get_session(key) is not None,
            catalog=self.executor.catalog(),
            extra_system=self.settings.system_prompt,
        )

    async def _ask(self, key: int, text: str) -> str:
        return await self.llm.run(key, self._prompt(key, text), self.get_session(key))

    async def _ask_streaming(self, key: int, text: str, draft: DraftMessage) -> ParsedResult:
        prompt = self._prompt(key, text)
        try:
            raw = await self.llm.stream(key, prompt, draft.update, self.get_session(key))
        except Exception as e:
            logger.warning(f"Streaming failed for chat {key}, falling back to batch: {type(e).__name__}: {e}")
            await draft.cancel()
            raw = await self.llm.run(key, prompt, self.get_session(key))

        result = parse_output(raw)
        self._save_session(key, result)
        return result

    async def _react(self, key: int, message_id: Optional[int], emoji: str):
        if message_id is None or not self.settings.reactions_enabled:
            return
        try:
            await self.transport.react(key, message_id, emoji)
        except Exception as e:
            logger.debug(f"Reaction {emoji} failed for chat {key}: {e}")

    # ── Directives ──────────────────────────────────────────

    async def _run_directive(self, key: int, call: DirectiveCall) -> str:
        """Execute the call; optionally let the model follow up on the result."""
        rounds = 0
        while True:
            logger.info(f"Chat {key}: executing {call.tool}")
            tool_result = await self.executor.execute(call)

            if not self.settings.tool_followup or rounds >= self.settings.max_tool_chain:
                return tool_result
            rounds += 1

            followup = (
                f'The tool "{call.tool}" returned:\n{tool_result}\n\n'
                "Continue: call another tool if needed, or answer the user."
            )
            result = parse_output(await self._ask(key, followup))
            self._save_session(key, result)
            if isinstance(result, Message):
                return result.text
            call = result

    # ── Delivery ────────────────────────────────────────────

    async def _deliver_message(self, key: int, text: str, draft: Optional[DraftMessage]):
        send = functools.partial(self.transport.send, key)

        if draft is not None and not draft.is_closed:
            overflow = await draft.finalize(text)
            if draft.is_sent:
                if overflow:
                    logger.info(f"Chat {key}: sending {len(overflow)} overflow chunk(s)")
                    await send_chunks(send, overflow)
                return

        sent = await send_formatted(send, text)
        logger.info(f"Chat {key}: reply delivered in {sent} chunk(s)")
