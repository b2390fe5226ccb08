"""Claude CLI integration.

Spawns ``claude -p -`` and captures its output. The prompt goes through
stdin to avoid command-line length limits. Sessions are resumed with
``--resume <session_id>``.

Two modes:
- ``run``: ``--output-format json``, one raw JSON blob when the process exits.
- ``stream``: ``--output-format stream-json --verbose``, NDJSON events. Text
  deltas are accumulated and pushed to a callback as they arrive; the final
  ``result`` event is returned as-is for ``parse_output``.
"""

import asyncio
import json
import logging
import os
import platform
from datetime import date
from typing import Optional

from .provider import DeltaCallback, LLMProcessError, LLMTimeoutError

logger = logging.getLogger("clawrelay.llm.claude_cli")

# result events carry the whole reply on one line
_STREAM_LIMIT = 8 * 1024 * 1024

DIRECTIVE_INSTRUCTIONS = (
    "To call a tool, respond with EXACTLY this JSON (no markdown fences):\n"
    '{"type":"tool_call","tool":"<tool.name>","args":{...}}\n'
    "Only call tools that are listed in the tool catalog. "
    "If you are not calling a tool, respond with plain text only."
)


def build_prompt(
    key: int,
    message: str,
    resume: bool,
    catalog: str = "",
    extra_system: str = "",
) -> str:
    """Build the prompt for a new or resumed session.

    New sessions get the full system preamble and tool catalog. Resumed
    sessions already carry it, so they only get a short context header
    (plus the catalog, so the model keeps exact parameter names).
    """
    catalog_block = f"\n[TOOLS]\n{catalog}\n" if catalog else ""

    if resume:
        return "\n".join([
            f"[Context: chatId={key}, date={date.today().isoformat()}]",
            catalog_block,
            message,
        ])

    lines = [
        "You are an assistant operating through a Telegram relay.",
        "Be concise. Format replies for Telegram: short paragraphs, bullet points, code blocks.",
        "",
        "## Environment",
        f"- Platform: {platform.system()} {platform.machine()}",
        f"- Date: {date.today().isoformat()}",
        f"- Telegram chat ID: {key}",
        "",
        "## Tool use",
        DIRECTIVE_INSTRUCTIONS,
    ]
    if extra_system:
        lines += ["", extra_system]

    parts = ["[SYSTEM]\n" + "\n".join(lines)]
    if catalog_block:
        parts.append(catalog_block)
    parts.append(f"\n[CURRENT MESSAGE]\nUser: {message}")
    return "\n".join(parts)


class ClaudeCLI:
    """Runs the Claude CLI as a subprocess."""

    def __init__(self, binary: str = "claude", model: str = "claude-sonnet-4-5", timeout: float = 120.0):
        self.binary = binary
        self.model = model
        self.timeout = timeout

    def _args(self, output_format: str, session_id: Optional[str]) -> list[str]:
        args = ["-p", "-", "--output-format", output_format]
        if output_format == "stream-json":
            args.append("--verbose")
        args += ["--model", self.model]
        if session_id:
            args += ["--resume", session_id]
        return args

    def _env(self) -> dict:
        # Without the API key the CLI uses its own login instead of the paid API
        env = dict(os.environ)
        env.pop("ANTHROPIC_API_KEY", None)
        return env

    async def _spawn(self, args: list[str]) -> asyncio.subprocess.Process:
        logger.debug(f"Spawning: {self.binary} {' '.join(args)}")
        return await asyncio.create_subprocess_exec(
            self.binary,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(),
            limit=_STREAM_LIMIT,
        )

    async def run(self, key: int, prompt: str, session_id: Optional[str] = None) -> str:
        """One-shot call. Failures come back as readable text, never raised."""
        try:
            proc = await self._spawn(self._args("json", session_id))
        except OSError as e:
            logger.error(f"Failed to spawn Claude CLI: {e}")
            return f'Error: Could not run Claude CLI. Is "{self.binary}" on your PATH?\n\n{e}'

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(prompt.encode("utf-8")), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await _terminate(proc)
            logger.warning(f"Claude CLI timed out after {self.timeout}s (chat {key})")
            return "(Claude CLI timed out — response took too long)"

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.warning(f"Claude CLI exited with code {proc.returncode}. stderr: {err[:500]}")
        if not out.strip():
            logger.warning(f"Claude CLI returned empty stdout. stderr: {err[:500]}")
            return err.strip() or "(Claude returned an empty response)"

        logger.debug(f"Claude raw output (first 300 chars): {out[:300]}")
        return out

    async def stream(
        self,
        key: int,
        prompt: str,
        on_delta: DeltaCallback,
        session_id: Optional[str] = None,
    ) -> str:
        """Streaming call. Raises LLMTimeoutError / LLMProcessError on failure."""
        try:
            proc = await self._spawn(self._args("stream-json", session_id))
        except OSError as e:
            raise LLMProcessError(f"Could not spawn {self.binary}: {e}") from e

        reader = _StreamReader(on_delta)
        try:
            await asyncio.wait_for(reader.consume(proc, prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await _terminate(proc)
            raise LLMTimeoutError(f"Claude CLI stream timed out after {self.timeout}s") from e
        except (OSError, ValueError) as e:
            # Broken stdin pipe, or a stdout line over the reader limit
            await _terminate(proc)
            raise LLMProcessError(f"Claude CLI stream failed: {type(e).__name__}: {e}") from e

        if reader.result_line is not None:
            logger.info(f"[stream] Result received for chat {key}: {len(reader.accumulated)} chars streamed")
            return reader.result_line
        if reader.accumulated:
            # Stream ended without a result event: use what we have
            return reader.accumulated
        if proc.returncode not in (0, None):
            raise LLMProcessError(
                f"Claude CLI exited with code {proc.returncode}: {reader.stderr[:300]}"
            )
        if reader.plain_lines:
            return "\n".join(reader.plain_lines)
        logger.warning(f"[stream] CLI exited cleanly but produced no output (chat {key})")
        return ""


class _StreamReader:
    """Consumes stream-json NDJSON from a running CLI process."""

    def __init__(self, on_delta: DeltaCallback):
        self.on_delta = on_delta
        self.accumulated = ""
        self.result_line: Optional[str] = None
        self.plain_lines: list[str] = []
        self.stderr = ""

    async def consume(self, proc: asyncio.subprocess.Process, prompt: str):
        proc.stdin.write(prompt.encode("utf-8"))
        await proc.stdin.drain()
        proc.stdin.close()

        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    await self.handle_line(line)
            self.stderr = (await stderr_task).decode("utf-8", errors="replace")
            await proc.wait()
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

    async def handle_line(self, line: str):
        try:
            event = json.loads(line)
        except ValueError:
            logger.debug(f"[stream] Non-JSON line: {line[:100]}")
            self.plain_lines.append(line)
            return
        if not isinstance(event, dict):
            return

        # --include-partial-messages wraps API events in stream_event
        if event.get("type") == "stream_event" and isinstance(event.get("event"), dict):
            event = event["event"]

        etype = event.get("type")
        if etype == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                self.accumulated += delta["text"]
                await self.on_delta(self.accumulated)
        elif etype == "result":
            if not isinstance(event.get("result"), str):
                event = dict(event, result=self.accumulated)
                line = json.dumps(event)
            self.result_line = line


async def _terminate(proc: asyncio.subprocess.Process):
    """Kill the child and reap it."""
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()
