"""Tests for per-user rate limiting."""

from unittest.mock import patch

from clawrelay.ratelimit import CLEANUP_INTERVAL_SECONDS, RateLimiter


class TestRateLimiter:
    """Test rate limiting functionality."""

    def test_allows_within_limit(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        for i in range(3):
            allowed, msg = limiter.check(1)
            assert allowed is True, f"Request {i+1} should be allowed"
            assert msg == ""

    def test_blocks_over_limit(self):
        """Requests over limit should be blocked with a wait time."""
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        limiter.check(1)
        limiter.check(1)

        allowed, msg = limiter.check(1)
        assert allowed is False
        assert msg.startswith("Slow down!")
        assert "60s" in msg

    def test_separate_limits_per_user(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        limiter.check(1)
        limiter.check(1)

        allowed, _ = limiter.check(2)
        assert allowed is True

    def test_window_slides(self):
        """Old requests fall out of the window."""
        limiter = RateLimiter(max_requests=2, window_seconds=6)
        with patch("clawrelay.ratelimit.time.time") as clock:
            clock.return_value = 1000.0
            limiter.check(1)
            clock.return_value = 1003.0
            limiter.check(1)
            assert limiter.check(1)[0] is False

            clock.return_value = 1006.5
            assert limiter.check(1)[0] is True
            assert limiter.check(1)[0] is False

    def test_rejected_requests_are_not_counted(self):
        limiter = RateLimiter(max_requests=1, window_seconds=6)
        with patch("clawrelay.ratelimit.time.time") as clock:
            clock.return_value = 1000.0
            limiter.check(1)
            clock.return_value = 1005.0
            assert limiter.check(1)[0] is False
            clock.return_value = 1006.0
            assert limiter.check(1)[0] is True

    def test_minimums(self):
        limiter = RateLimiter(max_requests=0, window_seconds=0)
        assert limiter.max_requests == 1
        assert limiter.window == 1

    def test_reset_user(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.check(1)
        assert limiter.check(1)[0] is False

        limiter.reset_user(1)
        assert limiter.check(1)[0] is True

    def test_reset_all(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.check(1)
        limiter.check(2)
        limiter.reset_all()
        assert limiter.tracked_users == 0

    def test_idle_users_swept(self):
        limiter = RateLimiter(max_requests=3, window_seconds=6)
        with patch("clawrelay.ratelimit.time.time") as clock:
            clock.return_value = 1000.0
            limiter._last_cleanup = 1000.0
            limiter.check(1)
            limiter.check(2)
            assert limiter.tracked_users == 2

            clock.return_value = 1000.0 + CLEANUP_INTERVAL_SECONDS
            limiter.check(3)
            assert limiter.tracked_users == 1
