"""Tests for the live point aggregator."""

from datetime import datetime, timezone

import pytest

from ffa.errors import ValidationFailure
from ffa.feed.base import FeedSnapshot, LineupPick, LineupSelection, PlayerPeriodScore
from ffa.identity import ManagerId
from ffa.scoring.live_points import (
    CAPTAIN,
    CARRIED_FORWARD,
    FORFEITED,
    VICE_CAPTAIN,
    PeriodTotal,
    ScoringRules,
    compute_entry_total,
    compute_live_points,
)


PATRICK = ManagerId("PATRICK")
DAVID = ManagerId("DAVID")


def make_lineup(manager=PATRICK, period=30, captain=1, vice=2, bench=(12, 13, 14, 15)) -> LineupSelection:
    """Starters 1..11 in slots 1..11, bench players after."""
    picks = [
        LineupPick(player_id=pid, slot=pid, is_captain=pid == captain, is_vice_captain=pid == vice)
        for pid in range(1, 12)
    ]
    picks += [
        LineupPick(player_id=pid, slot=12 + i, is_captain=pid == captain, is_vice_captain=pid == vice)
        for i, pid in enumerate(bench)
    ]
    return LineupSelection(manager=manager, period=period, picks=picks)


def score(pid, points, minutes=90, finished=True, period=30) -> PlayerPeriodScore:
    return PlayerPeriodScore(player_id=pid, period=period, points=points, minutes=minutes, finished=finished)


def flat_scores(points_by_player: dict[int, int]) -> dict[int, PlayerPeriodScore]:
    return {pid: score(pid, pts) for pid, pts in points_by_player.items()}


RULES = ScoringRules()


class TestEntryTotal:
    """Test the per-entry total."""

    def test_all_zero_lineup_totals_zero(self):
        """Zero raw points give zero, not a missing value."""
        total = compute_entry_total(make_lineup(), flat_scores({pid: 0 for pid in range(1, 16)}), RULES)
        assert total.total == 0
        assert total.captain_points == 0

    def test_unreported_players_count_zero(self):
        """Players the feed has not reported contribute 0."""
        total = compute_entry_total(make_lineup(), flat_scores({1: 5, 4: 3}), RULES)
        assert total.total == 5 * 2 + 3

    def test_captain_adds_raw_value_once(self):
        """With the captain scoring v, the total exceeds the plain sum by exactly v."""
        points = {pid: pid for pid in range(1, 16)}
        plain = sum(range(1, 12))
        for captain in (1, 6, 11):
            lineup = make_lineup(captain=captain, vice=2 if captain != 2 else 3)
            total = compute_entry_total(lineup, flat_scores(points), RULES)
            assert total.total - plain == captain
            assert total.captain_points == 2 * captain
            assert total.captaincy == CAPTAIN

    def test_bench_excluded_and_tracked(self):
        points = {pid: 1 for pid in range(1, 12)}
        points[12] = 20
        points[13] = 4
        total = compute_entry_total(make_lineup(), flat_scores(points), RULES)
        assert total.total == 11 + 1
        assert total.bench_points == 24

    def test_captain_still_to_play_keeps_armband(self):
        """An unfinished captain is not a non-feature."""
        scores = flat_scores({pid: 2 for pid in range(2, 12)})
        scores[1] = score(1, 0, minutes=0, finished=False)
        total = compute_entry_total(make_lineup(), scores, RULES)
        assert total.captaincy == CAPTAIN
        assert total.captain_player_id == 1


class TestCaptaincyBranches:
    """Test vice fallback, carry-forward and forfeiture."""

    def _captain_absent_scores(self):
        scores = flat_scores({pid: 3 for pid in range(2, 12)})
        scores[1] = score(1, 0, minutes=0)
        return scores

    def test_vice_captain_fallback(self):
        """Captain did not feature: the vice-captain's points are doubled."""
        total = compute_entry_total(make_lineup(), self._captain_absent_scores(), RULES)
        assert total.captaincy == VICE_CAPTAIN
        assert total.captain_player_id == 2
        assert total.total == 10 * 3 + 3
        assert total.captain_points == 6

    def test_no_fallback_keeps_absent_captain(self):
        rules = ScoringRules(vice_captain_fallback=False)
        total = compute_entry_total(make_lineup(), self._captain_absent_scores(), rules)
        assert total.captaincy == CAPTAIN
        assert total.captain_points == 0
        assert total.total == 10 * 3

    def test_benched_captain_falls_back_to_vice(self):
        lineup = make_lineup(captain=12, vice=5)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 16)}), RULES)
        assert total.captaincy == VICE_CAPTAIN
        assert total.captain_player_id == 5

    def test_forfeited_when_nothing_available(self):
        """No captain, no vice, nothing to carry: multiplier 1 for everyone."""
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 4 for pid in range(1, 12)}), RULES)
        assert total.captaincy == FORFEITED
        assert total.captain_player_id is None
        assert total.captain_points == 0
        assert total.total == 44

    def test_single_carry_forward(self):
        """Previous armband carries over once."""
        previous = PeriodTotal(manager=PATRICK, period=29, total=50, captain_player_id=7, captaincy=CAPTAIN)
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 12)}), RULES, previous=previous)
        assert total.captaincy == CARRIED_FORWARD
        assert total.captain_player_id == 7
        assert total.total == 12

    def test_single_carry_forward_resets_after_one_period(self):
        previous = PeriodTotal(
            manager=PATRICK, period=29, total=50, captain_player_id=7, captaincy=CARRIED_FORWARD
        )
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 12)}), RULES, previous=previous)
        assert total.captaincy == FORFEITED

    def test_chain_carry_forward(self):
        rules = ScoringRules(captain_carry_forward="chain")
        previous = PeriodTotal(
            manager=PATRICK, period=29, total=50, captain_player_id=7, captaincy=CARRIED_FORWARD
        )
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 12)}), rules, previous=previous)
        assert total.captaincy == CARRIED_FORWARD
        assert total.captain_player_id == 7

    def test_carry_forward_off(self):
        rules = ScoringRules(captain_carry_forward="off")
        previous = PeriodTotal(manager=PATRICK, period=29, total=50, captain_player_id=7, captaincy=CAPTAIN)
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 12)}), rules, previous=previous)
        assert total.captaincy == FORFEITED

    def test_carried_player_must_start(self):
        """A carried armband on a bench player is forfeited."""
        previous = PeriodTotal(manager=PATRICK, period=29, total=50, captain_player_id=13, captaincy=CAPTAIN)
        lineup = make_lineup(captain=None, vice=None)
        total = compute_entry_total(lineup, flat_scores({pid: 1 for pid in range(1, 16)}), RULES, previous=previous)
        assert total.captaincy == FORFEITED
        assert total.total == 11


class TestValidation:
    """Test rejection of malformed selections."""

    def test_two_captains_rejected(self):
        lineup = make_lineup()
        lineup.picks[3] = LineupPick(player_id=4, slot=4, is_captain=True)
        with pytest.raises(ValidationFailure, match="captains"):
            compute_entry_total(lineup, {}, RULES)

    def test_captain_equals_vice_rejected(self):
        lineup = make_lineup()
        lineup.picks[0] = LineupPick(player_id=1, slot=1, is_captain=True, is_vice_captain=True)
        lineup.picks[1] = LineupPick(player_id=2, slot=2)
        with pytest.raises(ValidationFailure, match="different players"):
            compute_entry_total(lineup, {}, RULES)

    def test_unknown_carry_forward_mode(self):
        with pytest.raises(ValidationFailure):
            ScoringRules(captain_carry_forward="sometimes")


class TestAutosubs:
    """Test optional automatic substitutions."""

    def test_non_featuring_starter_replaced(self):
        rules = ScoringRules(apply_autosubs=True)
        scores = flat_scores({pid: 2 for pid in range(1, 12)})
        scores[3] = score(3, 0, minutes=0)
        scores[12] = score(12, 0, minutes=0)
        scores[13] = score(13, 5, minutes=60)
        total = compute_entry_total(make_lineup(), scores, rules)
        assert total.substitutions == ((3, 13),)
        assert total.total == 10 * 2 + 2 + 5

    def test_substitute_inherits_captaincy(self):
        rules = ScoringRules(apply_autosubs=True)
        scores = flat_scores({pid: 1 for pid in range(2, 12)})
        scores[1] = score(1, 0, minutes=0)
        scores[12] = score(12, 6, minutes=90)
        total = compute_entry_total(make_lineup(), scores, rules)
        assert total.captaincy == CAPTAIN
        assert total.captain_player_id == 12
        assert total.captain_points == 12


class TestComputeLivePoints:
    """Test the period-wide aggregation."""

    def _snapshot(self, finalized=False, stale=False, lineups=None):
        lineups = lineups or {PATRICK: make_lineup(PATRICK), DAVID: make_lineup(DAVID)}
        return FeedSnapshot(
            period=30,
            fixtures=[],
            lineups=lineups,
            scores=flat_scores({pid: 2 for pid in range(1, 16)}),
            fetched_at=datetime.now(timezone.utc),
            finalized=finalized,
            stale=stale,
        )

    def test_keyed_by_manager(self):
        live = compute_live_points(self._snapshot(), RULES)
        assert set(live) == {PATRICK, DAVID}
        assert live.points() == {PATRICK: 24, DAVID: 24}
        assert live.captain_points()[PATRICK] == 4

    @pytest.mark.parametrize(
        "finalized,stale,expected",
        [(False, False, True), (True, False, False), (True, True, True)],
    )
    def test_provisional_flag(self, finalized, stale, expected):
        live = compute_live_points(self._snapshot(finalized=finalized, stale=stale), RULES)
        assert live.provisional is expected
        assert all(t.provisional is expected for t in live.values())

    def test_invalid_lineup_excluded_not_fatal(self):
        bad = make_lineup(DAVID)
        bad.picks[5] = LineupPick(player_id=6, slot=6, is_vice_captain=True)
        live = compute_live_points(self._snapshot(lineups={PATRICK: make_lineup(PATRICK), DAVID: bad}), RULES)
        assert list(live) == [PATRICK]
        assert DAVID in live.excluded

    def test_carry_forward_from_history(self):
        lineup = make_lineup(DAVID, captain=None, vice=None)
        history = {
            DAVID: PeriodTotal(manager=DAVID, period=29, total=40, captain_player_id=9, captaincy=CAPTAIN)
        }
        live = compute_live_points(self._snapshot(lineups={DAVID: lineup}), RULES, captain_history=history)
        assert live[DAVID].captaincy == CARRIED_FORWARD
        assert live[DAVID].total == 24


class TestBonusPoints:
    """Test that provisional bonus is held back until it is reliable."""

    def lineup_scores(self, **overrides) -> dict[int, PlayerPeriodScore]:
        scores = flat_scores({pid: 0 for pid in range(1, 16)})
        scores.update(overrides)
        return scores

    def live_score(self, pid, points, minutes, bonus, finished=False) -> PlayerPeriodScore:
        return PlayerPeriodScore(
            player_id=pid, period=30, points=points, minutes=minutes, finished=finished, bonus=bonus
        )

    def test_bonus_held_back_before_sixty_minutes(self):
        scores = self.lineup_scores()
        scores[3] = self.live_score(3, points=8, minutes=45, bonus=3)
        assert compute_entry_total(make_lineup(), scores, RULES).total == 5

    def test_bonus_counts_from_sixty_minutes(self):
        scores = self.lineup_scores()
        scores[3] = self.live_score(3, points=8, minutes=60, bonus=3)
        assert compute_entry_total(make_lineup(), scores, RULES).total == 8

    def test_bonus_counts_at_full_time(self):
        scores = self.lineup_scores()
        scores[3] = self.live_score(3, points=5, minutes=30, bonus=1, finished=True)
        assert compute_entry_total(make_lineup(), scores, RULES).total == 5

    def test_switch_off_counts_raw_points(self):
        scores = self.lineup_scores()
        scores[3] = self.live_score(3, points=8, minutes=45, bonus=3)
        rules = ScoringRules(bonus_reliable_at_60=False)
        assert compute_entry_total(make_lineup(), scores, rules).total == 8

    def test_captain_multiplied_after_bonus_removed(self):
        scores = self.lineup_scores()
        scores[1] = self.live_score(1, points=10, minutes=50, bonus=2)
        total = compute_entry_total(make_lineup(), scores, RULES)
        assert total.captaincy == CAPTAIN
        assert total.captain_points == 16
        assert total.total == 16

    def test_player_points_floored_at_zero(self):
        scores = self.lineup_scores()
        scores[3] = score(3, -2)
        scores[4] = score(4, 6)
        assert compute_entry_total(make_lineup(), scores, RULES).total == 6
