from leaderboard.delta import compute_changes
from leaderboard.models import PlayerRecord
from leaderboard.tests.conftest import create_player, create_snapshot


def _records(*players):
    return [PlayerRecord.from_stats(player, country_code=None) for player in players]


class TestComputeChanges:
    def test_changes_relative_to_previous_day(self):
        previous = create_snapshot(players=[create_player(5, "Alice", ev_won=100.0, ev_bb100=4.0, won=90.0, hands=1000)])
        current = _records(create_player(3, "Alice", ev_won=115.0, ev_bb100=4.5, won=85.0, hands=1050))

        [alice] = compute_changes(current, previous)

        assert alice.rank_change == 2
        assert alice.ev_won_change == 15.0
        assert alice.ev_bb100_change == 0.5
        assert alice.won_change == -5.0
        assert alice.hands_change == 50

    def test_rank_drop_is_negative(self):
        previous = create_snapshot(players=[create_player(1, "Alice")])

        [alice] = compute_changes(_records(create_player(4, "Alice")), previous)

        assert alice.rank_change == -3

    def test_new_player_has_no_change_fields(self):
        previous = create_snapshot(players=[create_player(1, "Alice")])
        current = _records(create_player(1, "Alice"), create_player(2, "Newcomer"))

        _, newcomer = compute_changes(current, previous)

        wire = newcomer.to_wire()
        assert not {"rankChange", "evWonChange", "evBB100Change", "wonChange", "handsChange"} & wire.keys()
        assert newcomer == current[1]

    def test_renamed_player_has_no_history(self):
        previous = create_snapshot(players=[create_player(1, "OldName")])

        [renamed] = compute_changes(_records(create_player(1, "NewName")), previous)

        assert renamed.rank_change is None

    def test_no_previous_snapshot_passes_input_through(self):
        current = _records(create_player(1, "Alice"))

        assert compute_changes(current, None) is current

    def test_country_code_preserved(self):
        previous = create_snapshot(players=[create_player(2, "Alice")])
        current = [PlayerRecord.from_stats(create_player(1, "Alice"), country_code="SE")]

        [alice] = compute_changes(current, previous)

        assert alice.country_code == "SE"
        assert alice.to_wire()["rankChange"] == 1
