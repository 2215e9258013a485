"""Response payloads served by the leaderboard API."""

from typing import Literal, Self

from pydantic import AwareDatetime, Field

from leaderboard.models import (
    MAX_PLAYERS,
    Fingerprint,
    LeaderboardView,
    PlayerStats,
    SnapshotDate,
    SnapshotIndexEntry,
    WireModel,
)


class LeaderboardResponse(LeaderboardView):
    is_historical: Literal[False] = False
    warning: str | None = None


class HistoryListItem(WireModel):
    date: SnapshotDate
    webpage_timestamp: Fingerprint
    captured_at: AwareDatetime

    @classmethod
    def from_entry(cls, entry: SnapshotIndexEntry) -> Self:
        return cls(date=entry.date, webpage_timestamp=entry.webpage_timestamp, captured_at=entry.captured_at)


class HistoryListResponse(WireModel):
    snapshots: list[HistoryListItem]
    count: int = Field(ge=0)


class HistoricalSnapshotResponse(WireModel):
    date: SnapshotDate
    players: list[PlayerStats] = Field(min_length=1, max_length=MAX_PLAYERS)
    captured_at: AwareDatetime
    webpage_timestamp: Fingerprint
    is_historical: Literal[True] = True
    has_previous_day_data: Literal[False] = False
    previous_day_date: None = None

    def to_wire(self) -> dict:
        # the fixed flags are part of the contract even when left at their defaults
        return self.model_dump(mode="json", by_alias=True)


def build_leaderboard_response(view: LeaderboardView, *, warning: str | None = None) -> LeaderboardResponse:
    payload = {**view.to_wire(), "isHistorical": False}
    if warning is not None:
        payload["warning"] = warning
    return LeaderboardResponse.model_validate(payload)

