"""Pytest configuration and shared fixtures."""

import itertools

import pytest

from clawrelay.config import RelaySettings


class FakeTransport:
    """Records every transport call.

    ``fail_html``: HTML sends/edits raise like Telegram does on bad markup.
    ``fail_plain``: plain sends/edits raise too.
    ``not_modified``: every edit is rejected as "message is not modified".
    """

    def __init__(self, fail_html=False, fail_plain=False, not_modified=False):
        self.fail_html = fail_html
        self.fail_plain = fail_plain
        self.not_modified = not_modified
        self.calls: list[tuple] = []
        self._ids = itertools.count(100)

    def _check(self, parse_mode):
        if parse_mode == "HTML" and self.fail_html:
            raise RuntimeError("Bad Request: can't parse entities")
        if parse_mode is None and self.fail_plain:
            raise RuntimeError("Bad Request: chat not found")

    async def send(self, key, text, parse_mode=None):
        self.calls.append(("send", key, text, parse_mode))
        self._check(parse_mode)
        return next(self._ids)

    async def edit(self, key, message_id, text, parse_mode=None):
        self.calls.append(("edit", key, message_id, text, parse_mode))
        if self.not_modified:
            raise RuntimeError(
                "Message is not modified: specified new message content and reply markup "
                "are exactly the same as a current content and reply markup of the message"
            )
        self._check(parse_mode)

    async def delete(self, key, message_id):
        self.calls.append(("delete", key, message_id))

    async def send_typing(self, key):
        self.calls.append(("typing", key))

    async def react(self, key, message_id, emoji):
        self.calls.append(("react", key, message_id, emoji))

    def of(self, kind):
        return [c for c in self.calls if c[0] == kind]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for transports that fail in configured ways."""
    return FakeTransport


@pytest.fixture
def settings():
    """Fast settings for pipeline tests (no .env lookup)."""
    return RelaySettings(
        _env_file=None,
        telegram_bot_token="test-token",
        debounce_enabled=False,
        debounce_ms=50,
        draft_start_threshold=5,
        draft_edit_interval_ms=50,
        draft_min_diff_chars=10,
    )
