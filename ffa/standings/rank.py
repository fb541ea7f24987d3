"""
League table rank builder.

Win 3 / draw 1 / loss 0 over every head-to-head match up to and including
`through_period`. Live overrides may only touch the through period, and only
when that period is the current one: history is never altered by live data.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from ffa.errors import IdentifierMismatch
from ffa.identity import ManagerId

logger = logging.getLogger(__name__)

WIN_POINTS = 3
DRAW_POINTS = 1


@dataclass(frozen=True)
class MatchRecord:
    """A league fixture with whatever points have been recorded for it."""

    period: int
    home: ManagerId
    away: ManagerId
    home_points: Optional[int] = None
    away_points: Optional[int] = None


@dataclass(frozen=True)
class RankRow:
    manager: ManagerId
    rank: int
    points: int
    points_for: int
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0


class _Tally:
    __slots__ = ("points", "points_for", "played", "wins", "draws", "losses")

    def __init__(self):
        self.points = 0
        self.points_for = 0
        self.played = 0
        self.wins = 0
        self.draws = 0
        self.losses = 0

    def add(self, scored: int, conceded: int) -> None:
        self.played += 1
        self.points_for += scored
        if scored > conceded:
            self.wins += 1
            self.points += WIN_POINTS
        elif scored == conceded:
            self.draws += 1
            self.points += DRAW_POINTS
        else:
            self.losses += 1


def _check_overrides(
    overrides: Mapping[ManagerId, int],
    participants: set[ManagerId],
    through_period: int,
) -> None:
    """Overrides must be keyed by ManagerId and name a through-period participant."""
    for key in overrides:
        if not isinstance(key, ManagerId):
            raise IdentifierMismatch(
                "manager",
                key,
                f"live override keyed by {type(key).__name__}, expected ManagerId",
            )
        if key not in participants:
            raise IdentifierMismatch(
                "manager", key, f"no fixture for this manager in period {through_period}"
            )


def _sort_key(item: tuple[ManagerId, _Tally]):
    manager, tally = item
    return (-tally.points, -tally.points_for, str(manager))


def build_rank(
    matches: Iterable[MatchRecord],
    through_period: int,
    live_overrides: Optional[Mapping[ManagerId, int]] = None,
    current_period: Optional[int] = None,
) -> dict[ManagerId, RankRow]:
    """
    Build the league table through a period.

    Args:
        matches: Every league match record (any periods)
        through_period: Last period to include
        live_overrides: Live totals for the through period, keyed by ManagerId
        current_period: The period in progress. Overrides are ignored when
            through_period is before it. None means the caller asserts
            through_period is current.

    Returns:
        ManagerId -> RankRow, ranks 1..N in strict order
        (points desc, points_for desc, manager asc)

    Raises:
        IdentifierMismatch: An override key is not a ManagerId, or names a
            manager with no fixture in the through period
    """
    in_range = [m for m in matches if m.period <= through_period]

    overrides: Mapping[ManagerId, int] = live_overrides or {}
    if overrides and current_period is not None and through_period < current_period:
        logger.debug(f"[RANK] Ignoring live overrides for past period {through_period}")
        overrides = {}

    if overrides:
        participants = {
            side for m in in_range if m.period == through_period for side in (m.home, m.away)
        }
        _check_overrides(overrides, participants, through_period)

    tallies: dict[ManagerId, _Tally] = {}
    for match in in_range:
        home_points = match.home_points or 0
        away_points = match.away_points or 0
        if match.period == through_period and overrides:
            home_points = overrides.get(match.home, home_points)
            away_points = overrides.get(match.away, away_points)
        tallies.setdefault(match.home, _Tally()).add(home_points, away_points)
        tallies.setdefault(match.away, _Tally()).add(away_points, home_points)

    ordered = sorted(tallies.items(), key=_sort_key)
    return {
        manager: RankRow(
            manager=manager,
            rank=index,
            points=tally.points,
            points_for=tally.points_for,
            played=tally.played,
            wins=tally.wins,
            draws=tally.draws,
            losses=tally.losses,
        )
        for index, (manager, tally) in enumerate(ordered, start=1)
    }
