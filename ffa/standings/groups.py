"""
Group stage standings and the goblet points race.

Group stage: sum period totals and captain points per entry over a
contiguous period range, rank by (points desc, captain points desc,
manager asc), and mark the first ceil(N * advance_pct) as advancing.
Seeds are only handed to the bracket once every period in the range is
finalized; until then the stage reports itself incomplete.

Goblet: a pure points-for race over league fixtures.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ffa.errors import IdentifierMismatch, IncompleteData, ValidationFailure
from ffa.identity import ManagerId
from ffa.scoring.live_points import PeriodTotal
from ffa.standings.rank import MatchRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StandingRow:
    manager: ManagerId
    points: int
    tiebreak: int  # captain points over the range
    periods_played: int
    rank: int
    advancing: bool


@dataclass
class GroupStage:
    """Computed group standings for one competition."""

    start_period: int
    end_period: int
    advance_pct: float
    rows: list[StandingRow] = field(default_factory=list)
    missing_periods: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing_periods

    @property
    def advance_count(self) -> int:
        return sum(1 for row in self.rows if row.advancing)

    def row_for(self, manager: ManagerId) -> Optional[StandingRow]:
        return next((row for row in self.rows if row.manager == manager), None)

    def seeds(self) -> Optional[list[ManagerId]]:
        """Advancing managers in seed order, or None while periods are open."""
        if not self.complete:
            return None
        return [row.manager for row in self.rows if row.advancing]

    def require_seeds(self) -> list[ManagerId]:
        """Like seeds(), but raises IncompleteData instead of returning None."""
        if not self.complete:
            raise IncompleteData(self.missing_periods)
        return [row.manager for row in self.rows if row.advancing]


def advance_count_for(entrants: int, advance_pct: float) -> int:
    # Round before ceil so 10 * 0.8 stays 8 despite float error
    return min(entrants, math.ceil(round(entrants * advance_pct, 9)))


def compute_group_standings(
    totals: Iterable[PeriodTotal],
    start_period: int,
    end_period: int,
    advance_pct: float = 0.8,
    entrants: Optional[Iterable[ManagerId]] = None,
) -> GroupStage:
    """
    Compute group standings over [start_period, end_period].

    Args:
        totals: PeriodTotals (any periods; out-of-range ones are ignored)
        start_period: First group stage period
        end_period: Last group stage period (inclusive)
        advance_pct: Share of entrants that advance (rounded up)
        entrants: Managers in the group. Defaults to everyone with a total;
            entrants with no totals get zero rows.

    Returns:
        GroupStage with ranked rows. `missing_periods` lists periods with no
        totals or with provisional totals.
    """
    if end_period < start_period:
        raise ValidationFailure(f"Invalid period range {start_period}..{end_period}")
    if not 0 < advance_pct <= 1:
        raise ValidationFailure(f"advance_pct must be in (0, 1], got {advance_pct}")

    periods = range(start_period, end_period + 1)
    points: dict[ManagerId, int] = {}
    captain: dict[ManagerId, int] = {}
    played: dict[ManagerId, int] = {}
    seen: set[tuple[ManagerId, int]] = set()
    period_final: dict[int, bool] = {}

    for total in totals:
        if total.period not in periods:
            continue
        if not isinstance(total.manager, ManagerId):
            raise IdentifierMismatch("manager", total.manager, "period total not keyed by ManagerId")
        key = (total.manager, total.period)
        if key in seen:
            raise ValidationFailure(
                f"Duplicate period total for {total.manager} in period {total.period}"
            )
        seen.add(key)
        points[total.manager] = points.get(total.manager, 0) + total.total
        captain[total.manager] = captain.get(total.manager, 0) + total.captain_points
        played[total.manager] = played.get(total.manager, 0) + 1
        period_final[total.period] = period_final.get(total.period, True) and not total.provisional

    managers = set(points)
    if entrants is not None:
        managers |= set(entrants)

    ordered = sorted(
        managers,
        key=lambda m: (-points.get(m, 0), -captain.get(m, 0), str(m)),
    )
    cutoff = advance_count_for(len(ordered), advance_pct)
    rows = [
        StandingRow(
            manager=manager,
            points=points.get(manager, 0),
            tiebreak=captain.get(manager, 0),
            periods_played=played.get(manager, 0),
            rank=index,
            advancing=index <= cutoff,
        )
        for index, manager in enumerate(ordered, start=1)
    ]
    missing = [p for p in periods if not period_final.get(p, False)]

    logger.info(
        f"[GROUPS] Periods {start_period}-{end_period}: {len(rows)} entrants, "
        f"{cutoff} advancing, {'complete' if not missing else f'missing {missing}'}"
    )
    return GroupStage(
        start_period=start_period,
        end_period=end_period,
        advance_pct=advance_pct,
        rows=rows,
        missing_periods=missing,
    )


@dataclass(frozen=True)
class GobletRow:
    manager: ManagerId
    rank: int
    points_for: int
    rounds: int


def compute_goblet_standings(
    matches: Iterable[MatchRecord],
    through_period: Optional[int] = None,
) -> list[GobletRow]:
    """
    Rank managers by total points scored in league fixtures.

    Args:
        matches: League match records
        through_period: Latest finalized period to include (None = all)
    """
    points_for: dict[ManagerId, int] = {}
    rounds: dict[ManagerId, int] = {}
    for match in matches:
        if through_period is not None and match.period > through_period:
            continue
        for manager, scored in ((match.home, match.home_points), (match.away, match.away_points)):
            points_for[manager] = points_for.get(manager, 0) + (scored or 0)
            rounds[manager] = rounds.get(manager, 0) + 1

    ordered = sorted(points_for, key=lambda m: (-points_for[m], str(m)))
    return [
        GobletRow(manager=manager, rank=index, points_for=points_for[manager], rounds=rounds[manager])
        for index, manager in enumerate(ordered, start=1)
    ]
