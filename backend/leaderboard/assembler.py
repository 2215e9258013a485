"""Builds the current leaderboard view from a fresh scrape."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog
from pydantic import ValidationError

from leaderboard.delta import compute_changes
from leaderboard.models import LeaderboardView
from leaderboard.scraper import NoDataError, ScrapeError
from leaderboard.snapshots.repository import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from leaderboard.background import BackgroundTasks
    from leaderboard.countries import CountryDirectory
    from leaderboard.scraper import ScrapeResult
    from leaderboard.snapshots.repository import SnapshotRepository

logger = structlog.get_logger()


class Scraper(Protocol):
    async def fetch_leaderboard(self) -> ScrapeResult: ...

    async def probe_timestamp(self) -> str | None: ...


class LeaderboardAssembler:
    """Scrape, enrich with countries and deltas, and record today's snapshot.

    Saving new directory names and creating the daily snapshot are spawned
    as background tasks once the view has validated; the response never
    waits for them. A view that fails validation is reported as a
    ``ScrapeError`` so a cached leaderboard can still be served.
    """

    def __init__(
        self,
        scraper: Scraper,
        repository: SnapshotRepository,
        countries: CountryDirectory,
        background: BackgroundTasks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scraper = scraper
        self._repository = repository
        self._countries = countries
        self._background = background
        self._clock = clock

    async def build(self) -> LeaderboardView:
        result = await self._scraper.fetch_leaderboard()
        if not result.players:
            raise NoDataError("No player data found in response")

        fingerprint = result.webpage_timestamp
        if not fingerprint:
            fingerprint = self._clock().isoformat()
            logger.warning("source page has no timestamp, using capture time", fingerprint=fingerprint)

        merge = await self._countries.merge_country_codes(result.players)
        previous = await self._repository.load_previous_day_snapshot()
        try:
            view = LeaderboardView(
                players=compute_changes(merge.players, previous),
                last_updated=self._clock(),
                webpage_timestamp=fingerprint,
                has_previous_day_data=previous is not None,
                previous_day_date=previous.date if previous else None,
            )
        except ValidationError as e:
            logger.error(
                "assembled leaderboard failed validation",
                errors=e.errors(include_url=False, include_context=False, include_input=False),
            )
            raise ScrapeError("Scraped leaderboard failed validation") from e

        if merge.updated is not None:
            self._background.spawn(self._countries.save(merge.updated), name="save-country-directory")
        self._background.spawn(
            self._repository.ensure_daily_snapshot(result.players, fingerprint),
            name="ensure-daily-snapshot",
        )
        return view
