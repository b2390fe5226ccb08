"""clawrelay configuration management."""

import logging
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("clawrelay.config")


class RelaySettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Telegram
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    allowed_users: list[int] = Field(
        default_factory=list,
        description="Telegram user IDs allowed to talk to the bot (empty = everyone)",
    )
    reactions_enabled: bool = Field(default=True, description="React 👀/✅/❌ to the user's message")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable per-user rate limiting")
    rate_limit_max_requests: int = Field(default=3, description="Max messages per user per window")
    rate_limit_window_seconds: int = Field(default=6, description="Rate limit window")

    # Claude CLI subprocess
    claude_bin: str = Field(default="claude", description="Claude CLI executable")
    claude_model: str = Field(default="claude-sonnet-4-5", description="Model passed to --model")
    cli_timeout_seconds: float = Field(default=120.0, description="Max seconds per CLI call")
    system_prompt: str = Field(default="", description="Extra text appended to the system preamble")

    # Streaming draft
    streaming_enabled: bool = Field(default=True, description="Stream replies into a live draft message")
    draft_start_threshold: int = Field(default=30, description="Chars needed before the draft is first sent")
    draft_edit_interval_ms: int = Field(default=1000, description="Minimum time between draft edits")
    draft_min_diff_chars: int = Field(default=40, description="Growth that forces an immediate draft edit")

    # Debounce
    debounce_enabled: bool = Field(default=True, description="Merge rapid consecutive messages")
    debounce_ms: int = Field(default=1500, description="Debounce window")

    # Actions
    tool_followup: bool = Field(default=False, description="Feed action results back to the model")
    max_tool_chain: int = Field(default=5, description="Max follow-up rounds per turn")

    model_config = {"env_prefix": "CLAWRELAY_", "env_file": ".env", "extra": "ignore"}


def load_settings() -> RelaySettings:
    """Load settings from environment."""
    settings = RelaySettings()
    if not settings.telegram_bot_token:
        logger.warning(
            "No Telegram bot token configured. Set CLAWRELAY_TELEGRAM_BOT_TOKEN "
            "in the environment or .env before running `clawrelay start`."
        )
    if settings.draft_edit_interval_ms < 300:
        logger.warning(
            f"draft_edit_interval_ms={settings.draft_edit_interval_ms} is very low; "
            "Telegram may rate-limit message edits."
        )

    return settings
