"""In-process caching for the assembled leaderboard and the history list.

The leaderboard cache revalidates against a cheap fingerprint probe of the
source page instead of expiring blindly: while the page reports the same
"last updated" text the cached view is reused. A failed probe falls back to a
plain TTL. Entries older than ``max_age_seconds`` are always recomputed, so a
day rollover eventually reaches previous-day deltas even when the source page
never changes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

from leaderboard.scraper import ScrapeError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from leaderboard.models import LeaderboardView

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_AGE_SECONDS = 3600.0

REASON_WEBPAGE_UNCHANGED = "webpage-unchanged"
REASON_TIME_FALLBACK = "time-based-fallback"
STALE_WARNING = "Serving cached data because the leaderboard source could not be refreshed"


class CacheStatus(StrEnum):
    HIT = "HIT"
    MISS = "MISS"
    STALE = "STALE"


@dataclass(frozen=True)
class CacheResult:
    view: LeaderboardView
    status: CacheStatus
    reason: str | None = None
    warning: str | None = None


@dataclass(frozen=True)
class _Entry:
    view: LeaderboardView
    fingerprint: str
    cached_at: float


class LeaderboardCache:
    def __init__(
        self,
        compute: Callable[[], Awaitable[LeaderboardView]],
        probe: Callable[[], Awaitable[str | None]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._compute = compute
        self._probe = probe
        self._ttl_seconds = ttl_seconds
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._entry: _Entry | None = None

    @property
    def has_value(self) -> bool:
        return self._entry is not None

    def reset(self) -> None:
        self._entry = None

    async def get(self) -> CacheResult:
        """Return the leaderboard, recomputing only when the source has moved on.

        Raises the compute error (``ScrapeError``) only when nothing is cached.
        """
        entry = self._entry
        if entry is None:
            view = await self._refresh()
            return CacheResult(view=view, status=CacheStatus.MISS)

        age = self._clock() - entry.cached_at
        if age < self._max_age_seconds:
            reason = await self._revalidate(entry, age)
            if reason is not None:
                return CacheResult(view=entry.view, status=CacheStatus.HIT, reason=reason)

        try:
            view = await self._refresh()
        except ScrapeError as e:
            logger.warning("leaderboard refresh failed, serving stale data", error=str(e), age_seconds=round(age))
            return CacheResult(view=entry.view, status=CacheStatus.STALE, warning=STALE_WARNING)
        return CacheResult(view=view, status=CacheStatus.MISS)

    async def _revalidate(self, entry: _Entry, age: float) -> str | None:
        """Reason the entry is still fresh, or None when it must be recomputed."""
        fingerprint = await self._probe()
        if fingerprint is None:
            if age < self._ttl_seconds:
                return REASON_TIME_FALLBACK
            logger.info("fingerprint probe failed and cache expired", age_seconds=round(age))
            return None
        if fingerprint == entry.fingerprint:
            return REASON_WEBPAGE_UNCHANGED
        logger.info("leaderboard source changed", cached=entry.fingerprint, current=fingerprint)
        return None

    async def _refresh(self) -> LeaderboardView:
        view = await self._compute()
        self._entry = _Entry(view=view, fingerprint=view.webpage_timestamp, cached_at=self._clock())
        return view


class TimedValueCache(Generic[T]):
    """A single value kept for ``ttl_seconds`` after it was loaded."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: T | None = None
        self._loaded_at: float | None = None

    def reset(self) -> None:
        self._value = None
        self._loaded_at = None

    async def get_or_load(self, loader: Callable[[], Awaitable[T]]) -> T:
        now = self._clock()
        if self._loaded_at is not None and now - self._loaded_at < self._ttl_seconds:
            return self._value  # type: ignore[return-value]
        value = await loader()
        self._value = value
        self._loaded_at = now
        return value
