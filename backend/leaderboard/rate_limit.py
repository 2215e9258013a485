"""Fixed-window per-client rate limiter for the public leaderboard endpoint."""

import time

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS = 10


class FixedWindowRateLimiter:
    """Allows ``max_requests`` per client within each ``window_seconds`` window.

    A client's window starts at its first request and resets once it has
    elapsed. Expired windows are pruned lazily. State is process-local and
    disappears on restart.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, tuple[float, int]] = {}

    def consume(self, client: str) -> bool:
        """Count one request for ``client``. Returns True if allowed, False if rate-limited."""
        now = time.monotonic()
        self._prune(now)

        started, count = self._windows.get(client, (now, 0))
        if count >= self.max_requests:
            return False
        self._windows[client] = (started, count + 1)
        return True

    def remaining(self, client: str) -> int:
        window = self._windows.get(client)
        if window is None or time.monotonic() - window[0] >= self.window_seconds:
            return self.max_requests
        return max(0, self.max_requests - window[1])

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [client for client, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for client in expired:
            del self._windows[client]
