"""Day-over-day change computation for leaderboard rows."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from leaderboard.models import PlayerRecord, PlayerStats, Snapshot


def compute_changes(current: list[PlayerRecord], previous: Snapshot | None) -> list[PlayerRecord]:
    """Annotate current rows with changes relative to a previous snapshot.

    Players are matched by exact display name. A player missing from the
    previous snapshot (including one who was renamed) has no baseline and is
    returned without change fields. With no previous snapshot the input list
    itself is returned.
    """
    if previous is None:
        return current

    baseline: dict[str, PlayerStats] = {player.name: player for player in previous.players}

    result = []
    for record in current:
        before = baseline.get(record.name)
        if before is None:
            result.append(record)
            continue
        result.append(
            record.model_copy(
                update={
                    "rank_change": before.rank - record.rank,
                    "ev_won_change": record.ev_won - before.ev_won,
                    "ev_bb100_change": record.ev_bb100 - before.ev_bb100,
                    "won_change": record.won - before.won,
                    "hands_change": record.hands - before.hands,
                },
            ),
        )
    return result
