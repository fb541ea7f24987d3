"""
Two-leg knockout bracket engine.

Matchup lifecycle:

    awaiting_teams -> pending -> leg_1_complete -> complete

Round 1 pairs seed i with seed N+1-i as matchup i. The winner of round r
matchup k (of M) moves to round r+1 matchup k, slot 1, when k <= M/2, and
to matchup M+1-k, slot 2, otherwise; so 1v16 and 8v9 feed the same
round-2 tie. Each round's two legs are played in consecutive periods.

Resolution cascade, each step only while the previous one is exactly tied:

    1. aggregate points over both legs          (tag None)
    2. highest single leg                        (tag "highest_leg")
    3. captain points over both legs             (tag "captain_points")
    4. better (lower) seed                       (tag "seed")
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from ffa.errors import IdentifierMismatch, ValidationFailure
from ffa.identity import ManagerId
from ffa.scoring.live_points import PeriodTotal

logger = logging.getLogger(__name__)

AWAITING_TEAMS = "awaiting_teams"
PENDING = "pending"
LEG_1_COMPLETE = "leg_1_complete"
COMPLETE = "complete"

TIE_BREAK_HIGHEST_LEG = "highest_leg"
TIE_BREAK_CAPTAIN_POINTS = "captain_points"
TIE_BREAK_SEED = "seed"


@dataclass
class Matchup:
    competition: str
    round: int
    matchup_number: int
    leg_1_period: int
    leg_2_period: int
    team_1: Optional[ManagerId] = None
    team_2: Optional[ManagerId] = None
    team_1_seed: Optional[int] = None
    team_2_seed: Optional[int] = None
    team_1_leg_1_points: Optional[int] = None
    team_2_leg_1_points: Optional[int] = None
    team_1_leg_2_points: Optional[int] = None
    team_2_leg_2_points: Optional[int] = None
    team_1_leg_1_captain_points: Optional[int] = None
    team_2_leg_1_captain_points: Optional[int] = None
    team_1_leg_2_captain_points: Optional[int] = None
    team_2_leg_2_captain_points: Optional[int] = None
    winner: Optional[ManagerId] = None
    tie_break_method: Optional[str] = None
    status: str = AWAITING_TEAMS

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.competition, self.round, self.matchup_number)

    @property
    def has_teams(self) -> bool:
        return self.team_1 is not None and self.team_2 is not None

    @property
    def leg_1_recorded(self) -> bool:
        return self.team_1_leg_1_points is not None and self.team_2_leg_1_points is not None

    @property
    def leg_2_recorded(self) -> bool:
        return self.team_1_leg_2_points is not None and self.team_2_leg_2_points is not None

    @property
    def team_1_aggregate(self) -> int:
        return (self.team_1_leg_1_points or 0) + (self.team_1_leg_2_points or 0)

    @property
    def team_2_aggregate(self) -> int:
        return (self.team_2_leg_1_points or 0) + (self.team_2_leg_2_points or 0)

    def leg_for_period(self, period: int) -> Optional[int]:
        if period == self.leg_1_period:
            return 1
        if period == self.leg_2_period:
            return 2
        return None


def decide_winner(matchup: Matchup) -> Optional[tuple[int, Optional[str]]]:
    """
    Run the tie-break cascade on a matchup.

    Returns:
        (winning slot 1|2, tie-break tag), or None while any leg is unset
    """
    if not matchup.has_teams or not (matchup.leg_1_recorded and matchup.leg_2_recorded):
        return None

    t1_legs = (matchup.team_1_leg_1_points, matchup.team_1_leg_2_points)
    t2_legs = (matchup.team_2_leg_1_points, matchup.team_2_leg_2_points)

    steps = [
        (None, sum(t1_legs), sum(t2_legs)),
        (TIE_BREAK_HIGHEST_LEG, max(t1_legs), max(t2_legs)),
        (
            TIE_BREAK_CAPTAIN_POINTS,
            (matchup.team_1_leg_1_captain_points or 0) + (matchup.team_1_leg_2_captain_points or 0),
            (matchup.team_2_leg_1_captain_points or 0) + (matchup.team_2_leg_2_captain_points or 0),
        ),
        (
            TIE_BREAK_SEED,
            # Lower seed number is better, so negate
            -(matchup.team_1_seed if matchup.team_1_seed is not None else 10**6),
            -(matchup.team_2_seed if matchup.team_2_seed is not None else 10**6),
        ),
    ]
    for tag, team_1_value, team_2_value in steps:
        if team_1_value > team_2_value:
            return 1, tag
        if team_2_value > team_1_value:
            return 2, tag

    # Identical seeds cannot happen in a generated bracket
    raise ValidationFailure(f"Matchup {matchup.key} is tied on every tie-break")


def next_position(round_size: int, matchup_number: int) -> tuple[int, int]:
    """Where the winner of a matchup goes: (next matchup number, slot)."""
    if matchup_number <= round_size // 2:
        return matchup_number, 1
    return round_size + 1 - matchup_number, 2


class Bracket:
    """All matchups of one knockout competition."""

    def __init__(self, competition: str, matchups: Iterable[Matchup]):
        self.competition = competition
        self.rounds: dict[int, list[Matchup]] = {}
        for matchup in matchups:
            self.rounds.setdefault(matchup.round, []).append(matchup)
        for round_matchups in self.rounds.values():
            round_matchups.sort(key=lambda m: m.matchup_number)

    # =========================================================================
    # Generation
    # =========================================================================

    @classmethod
    def generate(cls, competition: str, seeds: list[ManagerId], first_leg_period: int) -> "Bracket":
        """
        Build a full bracket from seeds in ascending seed order.

        Raises:
            ValidationFailure: seed count is not a power of two (>= 2), or a
                manager is seeded twice
            IdentifierMismatch: a seed is not a ManagerId
        """
        size = len(seeds)
        if size < 2 or size & (size - 1):
            raise ValidationFailure(f"Bracket needs a power-of-two number of seeds, got {size}")
        if len(set(seeds)) != size:
            raise ValidationFailure("A manager appears more than once in the seeds")
        for seed in seeds:
            if not isinstance(seed, ManagerId):
                raise IdentifierMismatch("manager", seed, "seed not keyed by ManagerId")

        matchups: list[Matchup] = []
        round_size = size // 2
        round_number = 1
        while round_size >= 1:
            leg_1 = first_leg_period + 2 * (round_number - 1)
            for number in range(1, round_size + 1):
                matchup = Matchup(
                    competition=competition,
                    round=round_number,
                    matchup_number=number,
                    leg_1_period=leg_1,
                    leg_2_period=leg_1 + 1,
                )
                if round_number == 1:
                    matchup.team_1, matchup.team_1_seed = seeds[number - 1], number
                    matchup.team_2, matchup.team_2_seed = seeds[size - number], size + 1 - number
                    matchup.status = PENDING
                matchups.append(matchup)
            round_size //= 2
            round_number += 1

        logger.info(
            f"[BRACKET] Generated {competition}: {size} seeds, {round_number - 1} rounds, "
            f"first leg in period {first_leg_period}"
        )
        return cls(competition, matchups)

    # =========================================================================
    # Lookup
    # =========================================================================

    @property
    def final_round(self) -> int:
        return max(self.rounds) if self.rounds else 0

    def matchup(self, round_number: int, matchup_number: int) -> Matchup:
        for matchup in self.rounds.get(round_number, []):
            if matchup.matchup_number == matchup_number:
                return matchup
        raise ValidationFailure(
            f"No matchup {matchup_number} in round {round_number} of {self.competition}"
        )

    def all_matchups(self) -> list[Matchup]:
        return [m for r in sorted(self.rounds) for m in self.rounds[r]]

    @property
    def champion(self) -> Optional[ManagerId]:
        if not self.rounds:
            return None
        final = self.rounds[self.final_round]
        return final[0].winner if len(final) == 1 else None

    @property
    def complete(self) -> bool:
        return self.champion is not None

    # =========================================================================
    # Leg recording and resolution
    # =========================================================================

    def record_leg(
        self,
        round_number: int,
        matchup_number: int,
        leg: int,
        team_1_points: int,
        team_2_points: int,
        team_1_captain_points: int = 0,
        team_2_captain_points: int = 0,
    ) -> Matchup:
        """
        Record one leg's points for both sides.

        Recording the same values twice is a no-op. Leg 2 resolves the
        matchup and propagates the winner.

        Raises:
            ValidationFailure: unknown leg, matchup without both teams,
                matchup already complete, leg 2 before leg 1, or conflicting
                values for an already recorded leg
        """
        matchup = self.matchup(round_number, matchup_number)
        if leg not in (1, 2):
            raise ValidationFailure(f"Leg must be 1 or 2, got {leg}")
        if matchup.status == COMPLETE:
            raise ValidationFailure(f"Matchup {matchup.key} is complete and immutable")
        if not matchup.has_teams:
            raise ValidationFailure(f"Matchup {matchup.key} is still awaiting teams")
        if leg == 2 and not matchup.leg_1_recorded:
            raise ValidationFailure(f"Matchup {matchup.key}: leg 1 must be recorded before leg 2")

        values = {
            f"team_1_leg_{leg}_points": team_1_points,
            f"team_2_leg_{leg}_points": team_2_points,
            f"team_1_leg_{leg}_captain_points": team_1_captain_points,
            f"team_2_leg_{leg}_captain_points": team_2_captain_points,
        }
        already = matchup.leg_1_recorded if leg == 1 else matchup.leg_2_recorded
        if already:
            if all(getattr(matchup, name) == value for name, value in values.items()):
                return matchup
            raise ValidationFailure(f"Matchup {matchup.key}: leg {leg} already recorded with other points")

        for name, value in values.items():
            setattr(matchup, name, value)

        if leg == 1:
            matchup.status = LEG_1_COMPLETE
        else:
            self.resolve_matchup(matchup)
        return matchup

    def resolve_matchup(self, matchup: Matchup) -> Optional[ManagerId]:
        """
        Resolve a matchup if both legs have points.

        Returns the winner, or None (no error) while either leg is unset.
        A resolved matchup keeps its winner.
        """
        if matchup.winner is not None:
            return matchup.winner
        decision = decide_winner(matchup)
        if decision is None:
            return None

        slot, tag = decision
        matchup.winner = matchup.team_1 if slot == 1 else matchup.team_2
        matchup.tie_break_method = tag
        matchup.status = COMPLETE
        logger.info(
            f"[BRACKET] {self.competition} R{matchup.round} M{matchup.matchup_number}: "
            f"{matchup.winner} wins {matchup.team_1_aggregate}-{matchup.team_2_aggregate}"
            f"{f' on {tag}' if tag else ''}"
        )
        self._propagate(matchup, slot)
        return matchup.winner

    def _propagate(self, matchup: Matchup, slot: int) -> None:
        if matchup.round == self.final_round:
            logger.info(f"[BRACKET] {self.competition} complete, champion {matchup.winner}")
            return

        round_size = len(self.rounds[matchup.round])
        number, target_slot = next_position(round_size, matchup.matchup_number)
        target = self.matchup(matchup.round + 1, number)
        seed = matchup.team_1_seed if slot == 1 else matchup.team_2_seed

        current = target.team_1 if target_slot == 1 else target.team_2
        if current is not None and current != matchup.winner:
            raise ValidationFailure(
                f"Matchup {target.key} slot {target_slot} already holds {current}"
            )
        if target_slot == 1:
            target.team_1, target.team_1_seed = matchup.winner, seed
        else:
            target.team_2, target.team_2_seed = matchup.winner, seed

        if target.has_teams and target.status == AWAITING_TEAMS:
            target.status = PENDING

    def apply_period_totals(
        self,
        period: int,
        totals: Mapping[ManagerId, PeriodTotal],
    ) -> list[Matchup]:
        """
        Record finalized totals as leg points for every matchup played in a period.

        Provisional totals, matchups missing a side's total and legs that are
        already recorded are skipped.

        Returns:
            Matchups that changed
        """
        changed = []
        for matchup in self.all_matchups():
            leg = matchup.leg_for_period(period)
            if leg is None or not matchup.has_teams or matchup.status == COMPLETE:
                continue
            if (leg == 1 and matchup.leg_1_recorded) or (leg == 2 and matchup.leg_2_recorded):
                continue
            if leg == 2 and not matchup.leg_1_recorded:
                continue
            total_1 = totals.get(matchup.team_1)
            total_2 = totals.get(matchup.team_2)
            if total_1 is None or total_2 is None:
                logger.warning(
                    f"[BRACKET] {matchup.key} leg {leg}: missing total for "
                    f"{matchup.team_1 if total_1 is None else matchup.team_2}"
                )
                continue
            if total_1.provisional or total_2.provisional:
                continue
            self.record_leg(
                matchup.round,
                matchup.matchup_number,
                leg,
                total_1.total,
                total_2.total,
                total_1.captain_points,
                total_2.captain_points,
            )
            changed.append(matchup)
        return changed
