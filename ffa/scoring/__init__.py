"""Scoring module: live period totals with captaincy rules."""

from ffa.scoring.live_points import LivePoints, PeriodTotal, ScoringRules, compute_live_points

__all__ = [
    "LivePoints",
    "PeriodTotal",
    "ScoringRules",
    "compute_live_points",
]
