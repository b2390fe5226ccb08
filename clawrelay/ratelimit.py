"""Rate limiting per user.

Keeps one Telegram user from flooding the relay with turns, each of which
spawns a Claude CLI process.
"""

import logging
import time
from collections import defaultdict
from typing import Optional

logger = logging.getLogger("clawrelay.ratelimit")

# How often idle users are swept out of the table
CLEANUP_INTERVAL_SECONDS = 3600


class RateLimiter:
    """Rate limiter with sliding window per user.

    Default: 3 requests per 6 seconds per user.
    """

    def __init__(self, max_requests: int = 3, window_seconds: int = 6):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed per window
            window_seconds: Time window in seconds
        """
        self.max_requests = max(1, max_requests)
        self.window = max(1, window_seconds)
        self._requests: dict[int, list[float]] = defaultdict(list)
        self._last_cleanup = time.time()

    def check(self, user_id: int) -> tuple[bool, str]:
        """Check if user is within rate limit and record the request.

        Returns:
            Tuple of (allowed, message). The message is empty when allowed
            and carries the wait time when limited.
        """
        now = time.time()
        if now - self._last_cleanup >= CLEANUP_INTERVAL_SECONDS:
            self.cleanup(now)

        self._requests[user_id] = [t for t in self._requests[user_id] if now - t < self.window]

        if len(self._requests[user_id]) >= self.max_requests:
            oldest = self._requests[user_id][0]
            remaining = max(1, int(self.window - (now - oldest) + 0.999))
            logger.info(f"Rate limit hit for user {user_id}: {remaining}s remaining")
            return False, f"Slow down! Please wait {remaining}s before sending another message."

        self._requests[user_id].append(now)
        return True, ""

    def cleanup(self, now: Optional[float] = None):
        """Forget users with no requests inside the window."""
        now = time.time() if now is None else now
        stale = [
            uid for uid, stamps in self._requests.items()
            if not stamps or now - stamps[-1] >= self.window
        ]
        for uid in stale:
            del self._requests[uid]
        self._last_cleanup = now
        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} idle user(s)")

    def reset_user(self, user_id: int):
        if user_id in self._requests:
            del self._requests[user_id]
            logger.debug(f"Rate limit reset for user {user_id}")

    def reset_all(self):
        """Reset all rate limits."""
        self._requests.clear()
        logger.info("All rate limits reset")

    @property
    def tracked_users(self) -> int:
        return len(self._requests)
