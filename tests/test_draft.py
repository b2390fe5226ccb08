"""Tests for the streaming draft message."""

import asyncio

import pytest

from clawrelay.communication.draft import CURSOR, DraftMessage


def _draft(transport, **kwargs):
    params = dict(start_threshold=10, edit_interval_ms=100, min_diff_chars=200)
    params.update(kwargs)
    return DraftMessage(transport, 42, **params)


class TestStartAndThrottle:

    @pytest.mark.asyncio
    async def test_nothing_sent_below_threshold(self, transport):
        draft = _draft(transport)
        await draft.update("short")
        assert transport.calls == []
        assert not draft.is_sent

    @pytest.mark.asyncio
    async def test_first_send_has_cursor(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        assert transport.calls == [("send", 42, "x" * 10 + CURSOR, "HTML")]
        assert draft.message_id == 100

    @pytest.mark.asyncio
    async def test_small_updates_coalesce_into_one_deferred_edit(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.update("x" * 60)
        await draft.update("x" * 120)

        assert len(transport.of("send")) == 1
        assert transport.of("edit") == []

        await asyncio.sleep(0.2)
        edits = transport.of("edit")
        assert len(edits) == 1
        assert edits[0][3] == "x" * 120 + CURSOR

    @pytest.mark.asyncio
    async def test_deferred_edit_lands_at_interval_boundary(self, transport):
        draft = _draft(transport, edit_interval_ms=300)
        await draft.update("x" * 10)
        await asyncio.sleep(0.05)
        await draft.update("x" * 60)

        await asyncio.sleep(0.15)
        assert transport.of("edit") == []

        await asyncio.sleep(0.2)
        assert transport.of("edit") == [("edit", 42, 100, "x" * 60 + CURSOR, "HTML")]

    @pytest.mark.asyncio
    async def test_deferred_delay_counts_time_already_elapsed(self, transport):
        draft = _draft(transport, edit_interval_ms=300)
        await draft.update("x" * 10)
        await asyncio.sleep(0.2)
        await draft.update("x" * 60)

        delay = draft._timer.when() - asyncio.get_running_loop().time()
        assert 0 < delay < 0.15
        assert transport.of("edit") == []

        await asyncio.sleep(0.15)
        assert len(transport.of("edit")) == 1

    @pytest.mark.asyncio
    async def test_large_growth_edits_immediately(self, transport):
        draft = _draft(transport, min_diff_chars=20)
        await draft.update("x" * 10)
        await draft.update("x" * 50)
        assert transport.of("edit") == [("edit", 42, 100, "x" * 50 + CURSOR, "HTML")]

    @pytest.mark.asyncio
    async def test_edit_after_interval_is_immediate(self, transport):
        draft = _draft(transport, edit_interval_ms=50)
        await draft.update("x" * 10)
        await asyncio.sleep(0.07)
        await draft.update("x" * 12)
        assert len(transport.of("edit")) == 1

    @pytest.mark.asyncio
    async def test_long_draft_is_truncated_to_limit(self, transport):
        draft = _draft(transport, max_length=50)
        await draft.update("y" * 200)
        sent = transport.of("send")[0][2]
        assert len(sent) <= 50


class TestFinalize:

    @pytest.mark.asyncio
    async def test_final_edit_drops_cursor(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        overflow = await draft.finalize("final **text** here")

        assert overflow == []
        assert transport.of("edit")[-1] == ("edit", 42, 100, "final <b>text</b> here", "HTML")
        assert draft.is_closed

    @pytest.mark.asyncio
    async def test_finalize_is_idempotent(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.finalize("done")
        count = len(transport.calls)

        assert await draft.finalize("again") == []
        assert len(transport.calls) == count

    @pytest.mark.asyncio
    async def test_finalize_without_send_does_nothing(self, transport):
        draft = _draft(transport)
        await draft.update("tiny")
        assert await draft.finalize("tiny reply") == []
        assert transport.calls == []
        assert not draft.is_sent

    @pytest.mark.asyncio
    async def test_finalize_cancels_pending_deferred_edit(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.update("x" * 60)
        await draft.finalize("the end of it")
        await asyncio.sleep(0.2)

        edits = transport.of("edit")
        assert len(edits) == 1
        assert edits[0][3] == "the end of it"

    @pytest.mark.asyncio
    async def test_updates_after_finalize_are_ignored(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.finalize()
        count = len(transport.calls)
        await draft.update("x" * 500)
        assert len(transport.calls) == count

    @pytest.mark.asyncio
    async def test_overflow_chunks_returned(self, transport):
        draft = _draft(transport, max_length=100)
        await draft.update("x" * 10)
        final = "\n\n".join(["p" * 60] * 4)
        overflow = await draft.finalize(final)

        assert transport.of("edit")[-1][3] == "p" * 60
        assert overflow == ["p" * 60] * 3


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_deletes_draft(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.cancel()
        await draft.cancel()

        assert transport.of("delete") == [("delete", 42, 100)]
        assert draft.message_id is None
        assert draft.text == ""

    @pytest.mark.asyncio
    async def test_cancel_after_finalize_is_noop(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        await draft.finalize("kept")
        await draft.cancel()

        assert transport.of("delete") == []
        assert draft.message_id == 100

    @pytest.mark.asyncio
    async def test_cancel_before_send(self, transport):
        draft = _draft(transport)
        await draft.update("abc")
        await draft.cancel()
        assert transport.calls == []


class TestTransportErrors:

    @pytest.mark.asyncio
    async def test_html_send_retried_as_plain(self, make_transport):
        transport = make_transport(fail_html=True)
        draft = _draft(transport)
        await draft.update("**bold** text")

        sends = transport.of("send")
        assert len(sends) == 2
        assert sends[1] == ("send", 42, "bold text" + CURSOR, None)
        assert draft.is_sent

    @pytest.mark.asyncio
    async def test_send_failure_leaves_draft_unsent(self, make_transport):
        transport = make_transport(fail_html=True, fail_plain=True)
        draft = _draft(transport)
        await draft.update("x" * 20)
        assert not draft.is_sent
        assert await draft.finalize("x" * 20) == []

    @pytest.mark.asyncio
    async def test_not_modified_counts_as_success(self, make_transport):
        transport = make_transport(not_modified=True)
        draft = _draft(transport, min_diff_chars=5)
        await draft.update("x" * 10)
        await draft.update("x" * 20)

        assert len(transport.of("edit")) == 1
        # rendered state advanced: no deferred retry of the same text
        await asyncio.sleep(0.2)
        assert len(transport.of("edit")) == 1

    @pytest.mark.asyncio
    async def test_html_edit_retried_as_plain(self, transport):
        draft = _draft(transport)
        await draft.update("x" * 10)
        transport.fail_html = True
        await draft.finalize("a & *b*")

        edits = transport.of("edit")
        assert edits[-2] == ("edit", 42, 100, "a &amp; <i>b</i>", "HTML")
        assert edits[-1] == ("edit", 42, 100, "a & b", None)
