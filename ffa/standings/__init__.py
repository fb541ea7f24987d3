"""Standings module: league table, cup group stage and goblet race."""

from ffa.standings.groups import (
    GroupStage,
    StandingRow,
    compute_goblet_standings,
    compute_group_standings,
)
from ffa.standings.rank import MatchRecord, RankRow, build_rank

__all__ = [
    "MatchRecord",
    "RankRow",
    "build_rank",
    "GroupStage",
    "StandingRow",
    "compute_group_standings",
    "compute_goblet_standings",
]
