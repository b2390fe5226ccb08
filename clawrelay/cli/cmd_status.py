"""Status command — show the effective configuration."""

import shutil

from rich.table import Table

from . import cli
from .shared import console, mask_secret


@cli.command()
def status():
    """Show effective configuration."""
    from clawrelay.config import load_settings

    s = load_settings()
    claude_path = shutil.which(s.claude_bin)

    table = Table(title="clawrelay status", show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Bot token", mask_secret(s.telegram_bot_token))
    table.add_row("Allowed users", ", ".join(map(str, s.allowed_users)) or "everyone")
    table.add_row(
        "Claude CLI",
        claude_path or f"[red]{s.claude_bin} not found on PATH[/red]",
    )
    table.add_row("Model", s.claude_model)
    table.add_row("CLI timeout", f"{s.cli_timeout_seconds:g}s")
    table.add_row("Streaming", "on" if s.streaming_enabled else "off")
    table.add_row(
        "Draft",
        f"start ≥{s.draft_start_threshold} chars, edit every {s.draft_edit_interval_ms}ms "
        f"or +{s.draft_min_diff_chars} chars",
    )
    table.add_row("Debounce", f"on ({s.debounce_ms}ms)" if s.debounce_enabled else "off")
    table.add_row(
        "Rate limit",
        f"{s.rate_limit_max_requests} per {s.rate_limit_window_seconds}s" if s.rate_limit_enabled else "off",
    )
    table.add_row("Reactions", "on" if s.reactions_enabled else "off")
    table.add_row(
        "Tool follow-up",
        f"on (max {s.max_tool_chain} rounds)" if s.tool_followup else "off",
    )
    console.print(table)
