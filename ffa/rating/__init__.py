"""Rating module: versioned manager ratings and append-only history."""

from ffa.rating.engine import (
    FFA_RATING_V1,
    ManagerRatingInput,
    RatingBreakdown,
    RatingFormula,
    compute_field_stats,
    compute_rating,
)
from ffa.rating.history import DeltaSource, RatingLog

__all__ = [
    "FFA_RATING_V1",
    "RatingFormula",
    "ManagerRatingInput",
    "RatingBreakdown",
    "compute_field_stats",
    "compute_rating",
    "DeltaSource",
    "RatingLog",
]
