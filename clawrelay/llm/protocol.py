"""Structured output parser for Claude CLI output.

The CLI output mixes free text and JSON. Shapes we understand:

  {"type": "message", "text": "..."}
  {"type": "tool_call", "tool": "notes.add", "args": {...}}
  {"type": "result", "result": "...", "session_id": "..."}     (CLI envelope)
  [{"type": "text", "text": "..."}, {"type": "result", ...}]   (content blocks)

The envelope's ``result`` string may itself be a tool_call or message JSON,
and models often wrap a tool_call in prose or a ```json fence, so anything
that is not one of the shapes above is scanned for an embedded tool_call
object before being treated as plain text.

``parse_output`` never raises: every failure path ends in a ``Message``.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

EMPTY_PLACEHOLDER = "(empty response)"

# Envelopes may wrap one further envelope, no deeper
_MAX_ENVELOPE_DEPTH = 2

_ANSI_RE = re.compile(r'\x1b\[[0-9;]*m')
_FENCE_RE = re.compile(r'```[A-Za-z0-9_-]*[ \t]*')
_DIRECTIVE_MARKER_RE = re.compile(r'"type"\s*:\s*"tool_call"')


@dataclass
class Message:
    text: str
    session_id: Optional[str] = None


@dataclass
class DirectiveCall:
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None


ParsedResult = Union[Message, DirectiveCall]


def parse_output(raw: str) -> ParsedResult:
    """Classify raw CLI output as a Message or a DirectiveCall."""
    return _parse(raw or "", depth=0)


def _parse(raw: str, depth: int) -> ParsedResult:
    trimmed = raw.strip()

    try:
        parsed = json.loads(trimmed)
    except (ValueError, RecursionError):
        return _classify_text(trimmed)

    unwrap = depth < _MAX_ENVELOPE_DEPTH

    # CLI envelope: {"type": "result", "result": "<payload>"}
    if unwrap and _is_envelope(parsed):
        return _unwrap_envelope(parsed, depth)

    if isinstance(parsed, list):
        for block in parsed:
            if unwrap and _is_envelope(block):
                return _unwrap_envelope(block, depth)
        texts = [
            b["text"] for b in parsed
            if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
        ]
        if texts:
            return _classify_text("\n".join(texts))
        return _classify_text(trimmed)

    if isinstance(parsed, dict):
        session_id = _session_id(parsed)
        if parsed.get("type") == "message" and isinstance(parsed.get("text"), str):
            return Message(text=parsed["text"], session_id=session_id)
        call = _as_directive(parsed)
        if call is not None:
            call.session_id = session_id
            return call

    return _classify_text(trimmed)


def _unwrap_envelope(envelope: dict, depth: int) -> ParsedResult:
    session_id = _session_id(envelope)
    inner = _parse(envelope["result"], depth + 1)
    if inner.session_id is None:
        inner.session_id = session_id
    return inner


def _classify_text(text: str) -> ParsedResult:
    call = find_directive(text)
    if call is not None:
        return call
    return Message(text=extract_plain_text(text))


def _is_envelope(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("type") == "result"
        and isinstance(value.get("result"), str)
    )


def _session_id(obj: dict) -> Optional[str]:
    sid = obj.get("session_id")
    return sid if isinstance(sid, str) else None


def _as_directive(obj: Any) -> Optional[DirectiveCall]:
    """Return a DirectiveCall if ``obj`` has the tool_call shape."""
    if not isinstance(obj, dict) or obj.get("type") != "tool_call":
        return None
    tool = obj.get("tool")
    if not isinstance(tool, str) or not tool:
        return None
    args = obj.get("args", {})
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return None
    return DirectiveCall(tool=tool, args=args)


def extract_plain_text(raw: str) -> str:
    """Strip ANSI escape codes; never return an empty string."""
    clean = _ANSI_RE.sub('', raw).strip()
    return clean or EMPTY_PLACEHOLDER


# ============================================================
# EMBEDDED DIRECTIVE SCANNING
# ============================================================

def find_directive(text: str) -> Optional[DirectiveCall]:
    """Find a tool_call object embedded in free text.

    Code fences are dropped first. Every occurrence of the type marker is
    tried in order; the first one that sits inside a JSON object with the
    tool_call shape wins.
    """
    if not text:
        return None
    stripped = _FENCE_RE.sub('', text)

    for match in _DIRECTIVE_MARKER_RE.finditer(stripped):
        start = find_object_start(stripped, match.start())
        if start is None:
            continue
        end = find_object_end(stripped, start)
        if end is None:
            continue
        try:
            obj = json.loads(stripped[start:end + 1])
        except (ValueError, RecursionError):
            continue
        call = _as_directive(obj)
        if call is not None:
            return call
    return None


def find_object_start(text: str, pos: int) -> Optional[int]:
    """Walk backward from ``pos`` to the nearest unmatched ``{``."""
    depth = 0
    i = pos - 1
    while i >= 0:
        ch = text[i]
        if ch == '}':
            depth += 1
        elif ch == '{':
            if depth == 0:
                return i
            depth -= 1
        i -= 1
    return None


def find_object_end(text: str, start: int) -> Optional[int]:
    """Return the index of the ``}`` closing the object opened at ``start``.

    Braces inside double-quoted strings are ignored and backslash escapes
    inside strings are honored. Returns None if ``text[start]`` is not ``{``
    or the object is never closed.
    """
    if start < 0 or start >= len(text) or text[start] != '{':
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == '\\':
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return i
    return None
