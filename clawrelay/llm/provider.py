"""LLM runner interface and error types."""

from typing import Awaitable, Callable, Optional, Protocol


# ════════════════════════════════════════════════════════
# LLM Exception Hierarchy. The pipeline catches these to
# decide between the streaming and one-shot paths.
# ════════════════════════════════════════════════════════

class LLMError(Exception):
    """Base class for all LLM subprocess errors."""
    pass

class LLMTimeoutError(LLMError):
    """The subprocess did not finish within the configured timeout."""
    pass

class LLMProcessError(LLMError):
    """The subprocess could not be spawned or exited without output."""
    pass


DeltaCallback = Callable[[str], Awaitable[None]]


class LLMRunner(Protocol):
    """What the pipeline needs from a language-model backend.

    ``run`` returns raw output in one shot. ``stream`` feeds the accumulated
    text to ``on_delta`` as it arrives and returns the final raw output.
    Both return text that ``parse_output`` understands.
    """

    async def run(self, key: int, prompt: str, session_id: Optional[str] = None) -> str:
        ...

    async def stream(
        self,
        key: int,
        prompt: str,
        on_delta: DeltaCallback,
        session_id: Optional[str] = None,
    ) -> str:
        ...
