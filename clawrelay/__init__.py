"""clawrelay — Telegram relay for the Claude CLI."""

__version__ = "0.3.0"
