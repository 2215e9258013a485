"""Leaderboard data model.

Stored and served JSON uses camelCase keys (``evWon``, ``capturedAt``); Python
code constructs models with snake_case field names. Dump with
``by_alias=True, exclude_unset=True`` so optional change fields that were never
computed stay absent instead of rendering as null.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Self

from pydantic import (
    AfterValidator,
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from shared.validators import parse_iso_date

MAX_PLAYERS = 1000
MAX_HANDS = 1_000_000_000
MAX_NAME_LENGTH = 100


def _check_calendar_date(value: str) -> str:
    if parse_iso_date(value) is None:
        raise ValueError("Date must be a valid YYYY-MM-DD calendar date")
    return value


SnapshotDate = Annotated[str, AfterValidator(_check_calendar_date)]
CountryCode = Annotated[str, StringConstraints(pattern=r"^[A-Za-z]{2}$", to_upper=True)]
PlayerName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_NAME_LENGTH)]
Fingerprint = Annotated[str, StringConstraints(min_length=1)]


class WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class PlayerStats(WireModel):
    """One player's raw stats at one point in time. This is what snapshots store."""

    rank: int = Field(ge=1)
    name: PlayerName  # stable identity across days; rank is not
    ev_won: float
    ev_bb100: float = Field(alias="evBB100")
    won: float
    hands: int = Field(ge=0, le=MAX_HANDS)

    def raw_stats(self) -> PlayerStats:
        """Plain stats with any subclass extras (country, changes) stripped."""
        return PlayerStats(
            rank=self.rank,
            name=self.name,
            ev_won=self.ev_won,
            ev_bb100=self.ev_bb100,
            won=self.won,
            hands=self.hands,
        )


class PlayerRecord(PlayerStats):
    """A served player row: raw stats plus country and day-over-day changes.

    ``country_code`` left unset means "not looked up"; explicitly None means
    the directory lists the player as unknown.
    """

    country_code: CountryCode | None = None
    rank_change: int | None = None  # positive: the player moved up
    ev_won_change: float | None = None
    ev_bb100_change: float | None = Field(default=None, alias="evBB100Change")
    won_change: float | None = None
    hands_change: int | None = None

    @classmethod
    def from_stats(cls, stats: PlayerStats, **extra: object) -> Self:
        return cls(**stats.raw_stats().model_dump(), **extra)


class Snapshot(WireModel):
    """Immutable capture of every player's stats for one UTC calendar day."""

    date: SnapshotDate
    webpage_timestamp: Fingerprint  # opaque change fingerprint copied from the source page
    captured_at: AwareDatetime
    players: list[PlayerStats] = Field(min_length=1, max_length=MAX_PLAYERS)

    @field_validator("players")
    @classmethod
    def _unique_names(cls, players: list[PlayerStats]) -> list[PlayerStats]:
        seen: set[str] = set()
        for player in players:
            if player.name in seen:
                raise ValueError(f"Duplicate player name {player.name!r}")
            seen.add(player.name)
        return players


class SnapshotIndexEntry(WireModel):
    date: SnapshotDate
    webpage_timestamp: Fingerprint
    captured_at: AwareDatetime
    player_count: int = Field(ge=0)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> Self:
        return cls(
            date=snapshot.date,
            webpage_timestamp=snapshot.webpage_timestamp,
            captured_at=snapshot.captured_at,
            player_count=len(snapshot.players),
        )


class SnapshotIndex(WireModel):
    """Advisory summary of all stored snapshots, newest first.

    ``last_updated`` is None when no index object has been written yet.
    """

    snapshots: list[SnapshotIndexEntry] = Field(default_factory=list)
    last_updated: AwareDatetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def count(self) -> int:
        return len(self.snapshots)

    @property
    def dates(self) -> list[str]:
        return [entry.date for entry in self.snapshots]


class LeaderboardView(WireModel):
    """The current leaderboard as served to API consumers. Never persisted."""

    players: list[PlayerRecord] = Field(min_length=1, max_length=MAX_PLAYERS)
    last_updated: datetime
    webpage_timestamp: Fingerprint
    has_previous_day_data: bool
    previous_day_date: SnapshotDate | None
