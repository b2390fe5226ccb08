"""Markdown to Telegram HTML conversion and message splitting.

Telegram supports a limited HTML subset:
  <b>bold</b>, <i>italic</i>, <s>strikethrough</s>,
  <code>inline code</code>, <pre>code block</pre>,
  <a href="url">link</a>

This module converts common LLM markdown output to safe Telegram HTML,
splits long bodies into chunks that never break a <pre> block, and sends
them with a per-chunk plain-text fallback.
"""

import html as _html
import logging
import re
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("clawrelay.formatting")

MAX_MESSAGE_LENGTH = 4096

# Paragraph/line breaks are only used as split points past this share of the budget
_MIN_BREAK_RATIO = 0.3

SendFn = Callable[..., Awaitable[Any]]


def _escape(text: str) -> str:
    """Escape HTML special characters in plain text segments."""
    return _html.escape(text, quote=False)


# ============================================================
# MARKDOWN → HTML
# ============================================================

_FENCED_RE = re.compile(r'```([\w+-]*)[ \t]*\n(.*?)```', re.DOTALL)
_INLINE_CODE_RE = re.compile(r'`([^`\n]+)`')
_PLACEHOLDER_RE = re.compile(r'\x00(\d+)\x00')


def markdown_to_telegram_html(text: str) -> str:
    """Convert markdown-formatted text to Telegram-safe HTML.

    Handles:
    - ```code blocks``` → <pre>code</pre> (with language class if given)
    - `inline code` → <code>inline code</code>
    - # Header → <b>Header</b> (Telegram has no headers)
    - **bold** / __bold__ → <b>bold</b>
    - *italic* / _italic_ → <i>italic</i>
    - ~~strikethrough~~ → <s>strikethrough</s>
    - [text](url) → <a href="url">text</a>

    Code is pulled out into placeholders before anything else, so it is
    escaped once and never touched by the emphasis rules.
    """
    if not text:
        return text
    # NUL delimits the code placeholders below
    text = text.replace("\x00", "")

    protected: list[str] = []

    def _protect(fragment: str) -> str:
        protected.append(fragment)
        return f"\x00{len(protected) - 1}\x00"

    def _fenced(m: re.Match) -> str:
        lang, code = m.group(1), m.group(2)
        if lang:
            return _protect(
                f'<pre><code class="language-{_escape(lang)}">{_escape(code)}</code></pre>'
            )
        return _protect(f'<pre>{_escape(code)}</pre>')

    text = _FENCED_RE.sub(_fenced, text)
    text = _INLINE_CODE_RE.sub(lambda m: _protect(f'<code>{_escape(m.group(1))}</code>'), text)

    text = _escape(text)
    text = _format_inline(text)

    return _PLACEHOLDER_RE.sub(lambda m: protected[int(m.group(1))], text)


def _format_inline(text: str) -> str:
    """Apply links, headers, bold, italic, strikethrough to escaped text."""
    # Links: [text](url), before bold/italic
    text = re.sub(
        r'\[([^\]]+)\]\(([^)\s]+)\)',
        lambda m: f'<a href="{m.group(2).replace(chr(34), "&quot;")}">{m.group(1)}</a>',
        text,
    )

    text = re.sub(r'^#{1,6}\s+(.+)$', r'<b>\1</b>', text, flags=re.MULTILINE)

    # Bold: **text** or __text__
    text = re.sub(r'\*\*(.+?)\*\*', r'<b>\1</b>', text)
    text = re.sub(r'__(.+?)__', r'<b>\1</b>', text)

    # Italic: *text* or _text_ (but not inside words like file_name)
    text = re.sub(r'(?<![\w*])\*([^*\n]+?)\*(?![\w*])', r'<i>\1</i>', text)
    text = re.sub(r'(?<!\w)_([^_\n]+?)_(?!\w)', r'<i>\1</i>', text)

    text = re.sub(r'~~(.+?)~~', r'<s>\1</s>', text)

    return text


def strip_html(markup: str) -> str:
    """Turn Telegram HTML back into plain text (tags dropped, entities decoded)."""
    return _html.unescape(re.sub(r'<[^>]+>', '', markup))


# ============================================================
# MESSAGE SPLITTING
# ============================================================

_PRE_OPEN_RE = re.compile(r'<pre>(?:<code[^>]*>)?')


def split_message(markup: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a long HTML message into Telegram-safe chunks.

    Rules, in priority order:
    1. Never split inside a <pre> block. A block that would be cut is
       pulled whole into the chunk if that keeps it within 2x the limit,
       otherwise the chunk ends right before the block.
    2. Prefer a paragraph break (blank line), then a line break, past 30%
       of the limit.
    3. Hard cut at the limit, never inside a tag or an entity.

    A block that starts a chunk and is bigger than 2x the limit is cut
    into pieces that each carry the block's own opening and closing tags.
    """
    if len(markup) <= max_length:
        return [markup]

    chunks: list[str] = []
    remaining = markup

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        split_at, carry = _find_split_point(remaining, max_length)
        head = remaining[:split_at].rstrip()
        if carry:
            head += carry[1]
            remaining = carry[0] + remaining[split_at:]
        else:
            remaining = remaining[split_at:].lstrip()
        if head.strip():
            chunks.append(head)

    return [c.strip() for c in chunks if c.strip()] or [markup.strip()]


def _find_split_point(text: str, max_length: int) -> tuple[int, Optional[tuple[str, str]]]:
    """Return ``(index, carry)`` for the next cut.

    ``carry`` is ``(open_tag, close_tag)`` when the cut falls inside an
    oversized <pre> block: the chunk gets ``close_tag`` appended and the
    rest is reopened with ``open_tag``.
    """
    segment = text[:max_length]
    last_pre_open = segment.rfind("<pre")
    last_pre_close = segment.rfind("</pre>")

    if last_pre_open > last_pre_close:
        close_idx = text.find("</pre>", last_pre_open)
        if close_idx != -1:
            end_of_block = close_idx + len("</pre>")
            if end_of_block <= max_length * 2:
                return end_of_block, None
        if last_pre_open > 0:
            return last_pre_open, None
        return _split_inside_pre(text, max_length)

    para_break = segment.rfind("\n\n")
    if para_break > max_length * _MIN_BREAK_RATIO:
        return para_break + 2, None

    line_break = segment.rfind("\n")
    if line_break > max_length * _MIN_BREAK_RATIO:
        return line_break + 1, None

    return _safe_hard_cut(text, max_length), None


def _split_inside_pre(text: str, max_length: int) -> tuple[int, Optional[tuple[str, str]]]:
    """Cut an oversized <pre> block that starts at index 0."""
    m = _PRE_OPEN_RE.match(text)
    open_tag = m.group(0) if m else "<pre>"
    close_tag = "</code></pre>" if "<code" in open_tag else "</pre>"

    budget = max_length - len(close_tag)
    if budget <= len(open_tag):
        return _safe_hard_cut(text, max_length), None

    line_break = text.rfind("\n", len(open_tag), budget)
    if line_break > budget * _MIN_BREAK_RATIO:
        return line_break + 1, (open_tag, close_tag)
    return _safe_hard_cut(text, budget), (open_tag, close_tag)


def _safe_hard_cut(text: str, limit: int) -> int:
    """Back a hard cut off so it does not land inside ``<...>`` or ``&...;``."""
    cut = limit
    tag_open = text.rfind("<", 0, cut)
    if tag_open > 0 and text.rfind(">", 0, cut) < tag_open:
        cut = tag_open
    amp = text.rfind("&", 0, cut)
    if amp > 0 and ";" not in text[amp:cut]:
        semi = text.find(";", amp)
        # &quot; is the longest entity we emit
        if semi != -1 and semi - amp <= 6:
            cut = amp
    return cut


# ============================================================
# DELIVERY
# ============================================================

async def send_chunks(send: SendFn, chunks: list[str]) -> int:
    """Send HTML chunks one by one, retrying a failed chunk as plain text.

    ``send(text, parse_mode=None)`` is the transport call. Only the chunk
    that failed is resent. If the plain resend fails too, that chunk is
    logged and dropped. Returns the number of chunks delivered.
    """
    delivered = 0
    for chunk in chunks:
        try:
            await send(chunk, parse_mode="HTML")
            delivered += 1
            continue
        except Exception as e:
            logger.warning(f"HTML send failed, falling back to plain: {e}")

        try:
            await send(strip_html(chunk))
            delivered += 1
        except Exception as e:
            logger.error(f"Plain-text send failed, dropping chunk ({len(chunk)} chars): {e}")
    return delivered


async def send_formatted(send: SendFn, text: str, max_length: int = MAX_MESSAGE_LENGTH) -> int:
    """Convert markdown to HTML, split it and deliver every chunk."""
    if not text or not text.strip():
        return 0
    html = markdown_to_telegram_html(text)
    return await send_chunks(send, split_message(html, max_length))
