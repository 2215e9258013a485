from __future__ import annotations

from datetime import UTC, datetime, timedelta
from html import escape
from typing import TYPE_CHECKING

import pytest

from leaderboard.models import PlayerStats, Snapshot
from leaderboard.snapshots.repository import SnapshotRepository, encode_json, snapshot_path

if TYPE_CHECKING:
    from collections.abc import Sequence

    from shared.blob import BlobStore

TODAY = "2025-01-15"
YESTERDAY = "2025-01-14"
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
PAGE_TIMESTAMP = "January 15, 10:00 UTC"


class FixedClock:
    """Settable UTC clock for repository and assembler tests."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def create_player(
    rank: int = 1,
    name: str = "Alice",
    *,
    ev_won: float = 100.0,
    ev_bb100: float = 5.0,
    won: float = 80.0,
    hands: int = 1000,
) -> PlayerStats:
    return PlayerStats(rank=rank, name=name, ev_won=ev_won, ev_bb100=ev_bb100, won=won, hands=hands)


def create_snapshot(
    date: str = YESTERDAY,
    players: Sequence[PlayerStats] | None = None,
    *,
    webpage_timestamp: str = "January 14, 10:00 UTC",
    captured_at: datetime | None = None,
) -> Snapshot:
    if players is None:
        players = [create_player(1, "Alice"), create_player(2, "Bob", ev_won=50.0, hands=500)]
    if captured_at is None:
        captured_at = datetime.fromisoformat(f"{date}T12:00:00+00:00")
    return Snapshot(date=date, webpage_timestamp=webpage_timestamp, captured_at=captured_at, players=list(players))


async def put_raw_snapshot(store: BlobStore, snapshot: Snapshot | dict, date: str | None = None) -> None:
    """Write a snapshot object directly, bypassing validation and the index."""
    if isinstance(snapshot, Snapshot):
        date = date or snapshot.date
        snapshot = snapshot.to_wire()
    await store.put(snapshot_path(date), encode_json(snapshot))


def render_leaderboard_html(
    players: Sequence[PlayerStats],
    *,
    timestamp: str | None = PAGE_TIMESTAMP,
) -> str:
    """Render a page shaped like the source leaderboard, including the daily-change superscripts."""
    rows = "\n".join(
        "<tr>"
        f"<td>{player.rank}</td>"
        f"<td>{escape(player.name)}</td>"
        f"<td>${player.ev_won:,.2f}<sup>+12.00</sup></td>"
        f"<td>{player.ev_bb100:.2f}</td>"
        f"<td>${player.won:,.2f}</td>"
        f"<td>{player.hands:,}<sup>+50</sup></td>"
        "</tr>"
        for player in players
    )
    updated = f"<p class='note'>Leaderboard last updated {timestamp}</p>" if timestamp else ""
    return (
        "<html><head><title>High Stakes Leaderboard</title></head><body>"
        f"<h1>Cash Game Leaderboard</h1>{updated}"
        "<table class='tableDefault'>"
        "<thead><tr><th>#</th><th>Player</th><th>EV Won</th><th>EV bb/100</th><th>Won</th><th>Hands</th></tr></thead>"
        f"<tbody>{rows}</tbody></table></body></html>"
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def repository(blob_store, clock) -> SnapshotRepository:
    return SnapshotRepository(blob_store, clock=clock)
