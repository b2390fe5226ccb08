"""Telegram channel adapter."""

import asyncio
import logging
import time
from typing import Optional

from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..actions.registry import ActionExecutor
from ..config import RelaySettings
from ..llm.provider import LLMRunner
from ..ratelimit import RateLimiter
from .pipeline import RelayPipeline
from .transport import TelegramTransport

logger = logging.getLogger("clawrelay.telegram")


class TelegramChannel:
    """Telegram bot adapter: receives updates and feeds the relay pipeline."""

    def __init__(self, settings: RelaySettings, llm: LLMRunner, executor: ActionExecutor):
        self.settings = settings
        self.llm = llm
        self.executor = executor
        self.app: Optional[Application] = None
        self.pipeline: Optional[RelayPipeline] = None
        self._started_at = time.monotonic()
        self.rate_limiter = RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    def _is_allowed(self, user_id: Optional[int]) -> bool:
        if not self.settings.allowed_users:
            return True
        return user_id is not None and user_id in self.settings.allowed_users

    def _register_handlers(self):
        """Register all Telegram handlers on self.app."""
        self.app.add_handler(CommandHandler("start", self._cmd_start))
        self.app.add_handler(CommandHandler("status", self._cmd_status))
        self.app.add_handler(CommandHandler("clear", self._cmd_clear))
        self.app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message))
        self.app.add_error_handler(self._handle_error)

    async def start(self):
        """Start the Telegram bot."""
        # Handlers must run concurrently: a debounced first message waits
        # inside its handler while later fragments arrive.
        self.app = (
            Application.builder()
            .token(self.settings.telegram_bot_token)
            .concurrent_updates(256)
            .build()
        )
        self.pipeline = RelayPipeline(
            self.settings,
            self.llm,
            self.executor,
            TelegramTransport(self.app.bot),
        )
        self._register_handlers()

        logger.info("Starting Telegram bot...")
        # Retry initialization (getMe) on transient network errors
        for attempt in range(5):
            try:
                await self.app.initialize()
                break
            except Exception as e:
                if attempt < 4:
                    delay = [2, 5, 10, 15][attempt]
                    logger.warning(f"Telegram init failed (attempt {attempt + 1}/5): {type(e).__name__}: {e}. Retrying in {delay}s...")
                    await asyncio.sleep(delay)
                else:
                    raise
        await self.app.start()
        await self.app.updater.start_polling(
            drop_pending_updates=True,
            allowed_updates=["message"],
        )

        await self.app.bot.set_my_commands([
            BotCommand("start", "Welcome message"),
            BotCommand("status", "Relay status"),
            BotCommand("clear", "Start a new conversation"),
        ])
        logger.info("Telegram bot started.")

    async def stop(self):
        """Stop the Telegram bot, letting queued replies finish first."""
        if not self.app:
            return
        if self.app.updater and self.app.updater.running:
            await self.app.updater.stop()
        if self.pipeline:
            await self.pipeline.lock.wait_idle()
        if self.app.running:
            await self.app.stop()
        await self.app.shutdown()
        logger.info("Telegram bot stopped.")

    # ── Commands ────────────────────────────────────────────

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(
            "Hello! Send me a message and I'll pass it to Claude.\n\n"
            "Commands:\n"
            "/clear — start a new conversation\n"
            "/status — show session info",
        )

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_allowed(update.effective_user.id if update.effective_user else None):
            await update.message.reply_text("You are not authorised to use this bot.")
            return

        chat_id = update.effective_chat.id
        session = self.pipeline.get_session(chat_id)
        uptime_min = int((time.monotonic() - self._started_at) // 60)
        uptime = f"{uptime_min // 60}h {uptime_min % 60}m" if uptime_min >= 60 else f"{uptime_min}m"
        s = self.settings
        lines = [
            "<b>Status</b>",
            "",
            f"<b>Model:</b> {s.claude_model}",
            f"<b>Session:</b> {session[:12] + '...' if session else 'none'}",
            f"<b>Uptime:</b> {uptime}",
            f"<b>Streaming:</b> {'on' if s.streaming_enabled else 'off'}",
            f"<b>Debounce:</b> {f'on ({s.debounce_ms}ms)' if s.debounce_enabled else 'off'}",
            f"<b>Rate limit:</b> {f'{s.rate_limit_max_requests} per {s.rate_limit_window_seconds}s' if s.rate_limit_enabled else 'off'}",
            f"<b>Queued:</b> {self.pipeline.lock.queued(chat_id)}",
        ]
        await update.message.reply_text("\n".join(lines), parse_mode="HTML")

    async def _cmd_clear(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        self.pipeline.clear_session(update.effective_chat.id)
        await update.message.reply_text("Session cleared. Next message starts a new conversation.")

    # ── Messages ────────────────────────────────────────────

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        msg = update.message
        if msg is None or not msg.text:
            return
        user_id = msg.from_user.id if msg.from_user else None
        if not self._is_allowed(user_id):
            logger.warning(f"Blocked message from unauthorised user {user_id}")
            await msg.reply_text("You are not authorised to use this bot.")
            return

        chat_id = msg.chat.id
        if self.settings.rate_limit_enabled:
            allowed, limit_msg = self.rate_limiter.check(user_id if user_id is not None else chat_id)
            if not allowed:
                await msg.reply_text(limit_msg)
                return

        logger.info(f"Message from user {user_id} in chat {chat_id}: {msg.text[:80]}")
        await self.pipeline.handle_text(chat_id, msg.text, message_id=msg.message_id)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        """Handle errors."""
        logger.error(f"Telegram error: {context.error}", exc_info=context.error)
