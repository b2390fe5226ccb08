"""clawrelay — Main entry point."""

import asyncio
import logging
import os

from .actions.registry import ActionRegistry
from .communication.telegram import TelegramChannel
from .config import load_settings
from .llm.claude_cli import ClaudeCLI

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_log_file = os.path.expanduser("~/clawrelay.log")

logger = logging.getLogger("clawrelay")


def setup_logging(debug: bool = False):
    """Console + file logging; third-party HTTP chatter kept at WARNING."""
    logging.basicConfig(
        level=logging.INFO,
        format=_log_format,
        handlers=[
            logging.StreamHandler(),                          # stderr (console)
            logging.FileHandler(_log_file, encoding="utf-8"), # ~/clawrelay.log
        ],
    )
    if debug:
        logging.getLogger("clawrelay").setLevel(logging.DEBUG)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)


async def run(actions: ActionRegistry | None = None):
    """Main run loop."""
    settings = load_settings()
    if not settings.telegram_bot_token:
        logger.error("Cannot start: no Telegram bot token configured.")
        return

    llm = ClaudeCLI(
        binary=settings.claude_bin,
        model=settings.claude_model,
        timeout=settings.cli_timeout_seconds,
    )
    telegram = TelegramChannel(settings, llm, actions or ActionRegistry())

    try:
        await telegram.start()
        logger.info("clawrelay is running. Press Ctrl+C to stop.")
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        await telegram.stop()


def main():
    """Entry point."""
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
