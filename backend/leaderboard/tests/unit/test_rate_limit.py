"""Tests for the fixed-window rate limiter."""

from unittest.mock import patch

from leaderboard.rate_limit import FixedWindowRateLimiter


class TestFixedWindowRateLimiter:
    def test_allows_up_to_max_requests(self):
        """Each client gets max_requests within one window."""
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60)
        assert [limiter.consume("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_clients_are_independent(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)
        assert limiter.consume("a") is True
        assert limiter.consume("b") is True
        assert limiter.consume("a") is False

    def test_remaining_counts_down(self):
        limiter = FixedWindowRateLimiter(max_requests=10, window_seconds=60)
        assert limiter.remaining("a") == 10
        limiter.consume("a")
        limiter.consume("a")
        assert limiter.remaining("a") == 8

    def test_window_resets_after_expiry(self):
        """Once the window has elapsed the client starts a fresh window."""
        with patch("leaderboard.rate_limit.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60)
            limiter.consume("a")
            limiter.consume("a")
            assert limiter.consume("a") is False

            mock_time.monotonic.return_value = 1059.9
            assert limiter.consume("a") is False

            mock_time.monotonic.return_value = 1060.0
            assert limiter.remaining("a") == 2
            assert limiter.consume("a") is True
            assert limiter.remaining("a") == 1

    def test_rejected_requests_do_not_extend_window(self):
        with patch("leaderboard.rate_limit.time") as mock_time:
            mock_time.monotonic.return_value = 0.0
            limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10)
            limiter.consume("a")
            mock_time.monotonic.return_value = 9.0
            assert limiter.consume("a") is False
            mock_time.monotonic.return_value = 10.0
            assert limiter.consume("a") is True

    def test_expired_clients_are_pruned(self):
        with patch("leaderboard.rate_limit.time") as mock_time:
            mock_time.monotonic.return_value = 0.0
            limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=10)
            limiter.consume("a")
            mock_time.monotonic.return_value = 20.0
            limiter.consume("b")
            assert set(limiter._windows) == {"b"}

    def test_reset_clears_all_windows(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)
        limiter.consume("a")
        limiter.reset()
        assert limiter.consume("a") is True
