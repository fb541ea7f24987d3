"""Tests for the two-leg knockout bracket engine."""

import pytest

from ffa.errors import IdentifierMismatch, ValidationFailure
from ffa.identity import ManagerId
from ffa.knockout.bracket import (
    AWAITING_TEAMS,
    COMPLETE,
    LEG_1_COMPLETE,
    PENDING,
    TIE_BREAK_CAPTAIN_POINTS,
    TIE_BREAK_HIGHEST_LEG,
    TIE_BREAK_SEED,
    Bracket,
    decide_winner,
    next_position,
)
from ffa.scoring.live_points import PeriodTotal


SEEDS = [ManagerId(f"SEED{i:02d}") for i in range(1, 17)]


def sixteen() -> Bracket:
    return Bracket.generate("cup", SEEDS, first_leg_period=33)


def final_only() -> Bracket:
    return Bracket.generate("cup", SEEDS[:2], first_leg_period=39)


def play(bracket, round_number, number, leg_1, leg_2, captains=((0, 0), (0, 0))):
    bracket.record_leg(round_number, number, 1, leg_1[0], leg_1[1], *captains[0])
    return bracket.record_leg(round_number, number, 2, leg_2[0], leg_2[1], *captains[1])


class TestGeneration:
    """Test seeding and round layout."""

    def test_round_one_pairs_top_with_bottom(self):
        """Seed i meets seed N+1-i in matchup i."""
        bracket = sixteen()
        pairs = [(m.team_1_seed, m.team_2_seed) for m in bracket.rounds[1]]
        assert pairs == [(1, 16), (2, 15), (3, 14), (4, 13), (5, 12), (6, 11), (7, 10), (8, 9)]
        assert bracket.matchup(1, 1).team_1 == SEEDS[0]
        assert bracket.matchup(1, 1).team_2 == SEEDS[15]
        assert all(m.status == PENDING for m in bracket.rounds[1])

    def test_later_rounds_are_placeholders(self):
        bracket = sixteen()
        assert [len(bracket.rounds[r]) for r in (1, 2, 3, 4)] == [8, 4, 2, 1]
        assert bracket.final_round == 4
        for r in (2, 3, 4):
            assert all(m.status == AWAITING_TEAMS and m.team_1 is None for m in bracket.rounds[r])

    def test_leg_periods_are_consecutive(self):
        bracket = sixteen()
        assert [(bracket.rounds[r][0].leg_1_period, bracket.rounds[r][0].leg_2_period) for r in (1, 2, 3, 4)] == [
            (33, 34),
            (35, 36),
            (37, 38),
            (39, 40),
        ]

    @pytest.mark.parametrize("count", [0, 1, 3, 6, 10])
    def test_non_power_of_two_rejected(self, count):
        with pytest.raises(ValidationFailure):
            Bracket.generate("cup", SEEDS[:count], first_leg_period=33)

    def test_duplicate_seed_rejected(self):
        with pytest.raises(ValidationFailure):
            Bracket.generate("cup", [SEEDS[0], SEEDS[0]], first_leg_period=33)

    def test_plain_string_seed_rejected(self):
        with pytest.raises(IdentifierMismatch):
            Bracket.generate("cup", [SEEDS[0], "SEED02"], first_leg_period=33)


class TestPropagation:
    """Test where winners move."""

    @pytest.mark.parametrize(
        "round_size,number,expected",
        [(8, 1, (1, 1)), (8, 8, (1, 2)), (8, 4, (4, 1)), (8, 5, (4, 2)), (8, 7, (2, 2)), (2, 2, (1, 2))],
    )
    def test_next_position(self, round_size, number, expected):
        assert next_position(round_size, number) == expected

    def test_one_v_sixteen_and_eight_v_nine_meet(self):
        """R2 M1 waits for both feeders, then becomes pending."""
        bracket = sixteen()
        play(bracket, 1, 1, (60, 40), (55, 50))
        target = bracket.matchup(2, 1)
        assert target.team_1 == SEEDS[0]
        assert target.team_1_seed == 1
        assert target.status == AWAITING_TEAMS

        play(bracket, 1, 8, (30, 40), (30, 45))
        assert target.team_2 == SEEDS[8]
        assert target.team_2_seed == 9
        assert target.status == PENDING

    def test_seven_v_ten_winner_goes_to_slot_two(self):
        bracket = sixteen()
        play(bracket, 1, 7, (70, 40), (50, 50))
        target = bracket.matchup(2, 2)
        assert target.team_2 == SEEDS[6]
        assert target.team_1 is None

    def test_full_bracket_crowns_champion(self):
        """Higher seed wins every tie on aggregate."""
        bracket = sixteen()
        for round_number in (1, 2, 3, 4):
            for matchup in list(bracket.rounds[round_number]):
                play(bracket, round_number, matchup.matchup_number, (50, 40), (50, 40))
        assert bracket.complete
        assert bracket.champion == SEEDS[0]
        assert bracket.matchup(4, 1).team_2 == SEEDS[1]


class TestTieBreakCascade:
    """Test each cascade step in order."""

    def test_aggregate_decides(self):
        bracket = final_only()
        matchup = play(bracket, 1, 1, (50, 40), (30, 45))
        assert matchup.winner == SEEDS[1]
        assert matchup.tie_break_method is None
        assert (matchup.team_1_aggregate, matchup.team_2_aggregate) == (80, 85)

    def test_highest_leg_decides_level_aggregate(self):
        bracket = final_only()
        matchup = play(bracket, 1, 1, (60, 50), (40, 50))
        assert matchup.winner == SEEDS[0]
        assert matchup.tie_break_method == TIE_BREAK_HIGHEST_LEG

    def test_captain_points_decide_level_legs(self):
        bracket = final_only()
        matchup = play(bracket, 1, 1, (50, 50), (50, 50), captains=((10, 15), (10, 10)))
        assert matchup.winner == SEEDS[1]
        assert matchup.tie_break_method == TIE_BREAK_CAPTAIN_POINTS

    def test_seed_decides_when_everything_level(self):
        bracket = final_only()
        matchup = play(bracket, 1, 1, (50, 50), (50, 50), captains=((10, 10), (10, 10)))
        assert matchup.winner == SEEDS[0]
        assert matchup.tie_break_method == TIE_BREAK_SEED
        assert bracket.champion == SEEDS[0]

    def test_undecided_while_leg_unset(self):
        """Resolution returns no winner (no error) while a leg is missing."""
        bracket = final_only()
        matchup = bracket.record_leg(1, 1, 1, 50, 40)
        assert matchup.status == LEG_1_COMPLETE
        assert decide_winner(matchup) is None
        assert bracket.resolve_matchup(matchup) is None
        assert matchup.winner is None


class TestLegRecording:
    """Test immutability and ordering of leg writes."""

    def test_completed_matchup_is_immutable(self):
        bracket = final_only()
        play(bracket, 1, 1, (50, 40), (50, 40))
        with pytest.raises(ValidationFailure):
            bracket.record_leg(1, 1, 2, 10, 90)

    def test_rerecording_same_leg_is_noop(self):
        bracket = final_only()
        bracket.record_leg(1, 1, 1, 50, 40, 10, 8)
        matchup = bracket.record_leg(1, 1, 1, 50, 40, 10, 8)
        assert matchup.team_1_leg_1_points == 50
        assert matchup.status == LEG_1_COMPLETE

    def test_conflicting_rerecording_rejected(self):
        bracket = final_only()
        bracket.record_leg(1, 1, 1, 50, 40)
        with pytest.raises(ValidationFailure):
            bracket.record_leg(1, 1, 1, 51, 40)

    def test_leg_two_before_leg_one_rejected(self):
        bracket = final_only()
        with pytest.raises(ValidationFailure):
            bracket.record_leg(1, 1, 2, 50, 40)

    def test_awaiting_teams_rejected(self):
        bracket = sixteen()
        with pytest.raises(ValidationFailure):
            bracket.record_leg(2, 1, 1, 50, 40)

    def test_unknown_matchup(self):
        with pytest.raises(ValidationFailure):
            final_only().matchup(2, 1)


class TestApplyPeriodTotals:
    """Test feeding finalized period totals into the bracket."""

    def _totals(self, period, first, second, provisional=False):
        return {
            SEEDS[0]: PeriodTotal(manager=SEEDS[0], period=period, total=first, captain_points=10, provisional=provisional),
            SEEDS[1]: PeriodTotal(manager=SEEDS[1], period=period, total=second, captain_points=12, provisional=provisional),
        }

    def test_provisional_totals_skipped(self):
        bracket = final_only()
        assert bracket.apply_period_totals(39, self._totals(39, 50, 40, provisional=True)) == []
        assert not bracket.matchup(1, 1).leg_1_recorded

    def test_legs_recorded_then_resolved(self):
        bracket = final_only()
        changed = bracket.apply_period_totals(39, self._totals(39, 50, 40))
        assert [m.key for m in changed] == [("cup", 1, 1)]
        assert bracket.matchup(1, 1).team_2_leg_1_captain_points == 12

        bracket.apply_period_totals(40, self._totals(40, 30, 45))
        matchup = bracket.matchup(1, 1)
        assert matchup.status == COMPLETE
        assert matchup.winner == SEEDS[1]
        assert bracket.champion == SEEDS[1]

    def test_reapplying_a_period_changes_nothing(self):
        bracket = final_only()
        bracket.apply_period_totals(39, self._totals(39, 50, 40))
        assert bracket.apply_period_totals(39, self._totals(39, 50, 40)) == []

    def test_missing_total_skips_matchup(self):
        bracket = final_only()
        totals = self._totals(39, 50, 40)
        del totals[SEEDS[1]]
        assert bracket.apply_period_totals(39, totals) == []

    def test_unrelated_period_ignored(self):
        assert final_only().apply_period_totals(12, self._totals(12, 50, 40)) == []
