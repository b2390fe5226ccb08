"""Per-chat sequential processing lock.

Messages in the same chat are processed one at a time, in arrival order,
while different chats run in parallel. This is what keeps two replies to
the same chat from editing the same draft at once.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Hashable

logger = logging.getLogger("clawrelay.chat_lock")

Task = Callable[[], Awaitable[None]]


class ChatLock:
    """FIFO task queues keyed by conversation, one drain loop per key.

    Idle keys hold no state: the queue and its drain task are dropped as
    soon as the queue runs empty.
    """

    def __init__(self):
        self._queues: dict[Hashable, deque[Task]] = {}
        self._drainers: dict[Hashable, asyncio.Task] = {}

    @property
    def active_keys(self) -> set:
        return set(self._drainers)

    def queued(self, key: Hashable) -> int:
        """Number of tasks waiting (not counting the one running)."""
        queue = self._queues.get(key)
        return len(queue) if queue else 0

    def enqueue(self, key: Hashable, task: Task):
        """Schedule ``task`` for ``key``; start a drain loop if none is running."""
        self._queues.setdefault(key, deque()).append(task)

        if key not in self._drainers:
            self._drainers[key] = asyncio.create_task(self._drain(key))

    async def _drain(self, key: Hashable):
        try:
            while True:
                queue = self._queues.get(key)
                if not queue:
                    self._queues.pop(key, None)
                    return

                task = queue.popleft()
                try:
                    await task()
                except Exception:
                    logger.exception(f"Task error in chat {key}")
        finally:
            self._drainers.pop(key, None)

    async def wait_idle(self):
        """Wait until every chat's queue has drained."""
        while self._drainers:
            await asyncio.gather(*list(self._drainers.values()), return_exceptions=True)
