"""FFA manager rating, version V1.

Competitive conversion (titles, finishes) drives the rating; scoring
efficiency and per-period strength act as stabilizers.

    base     = placement + silverware + efficiency
    modifier = 1 + alpha * tanh(z(+/G))
    rating   = base * modifier

Placement is normalized per season against the field's rank mean and
population std-dev, so fields of different sizes compare fairly.
Efficiency is a saturating curve of points per game. The modifier is
smooth and bounded to (1 - alpha, 1 + alpha) without clamping.

A formula change ships as a new RatingFormula with a new version tag;
FFA_RATING_V1 is never edited, so stored V1 values stay reproducible.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from ffa.config import SeasonConfig, season_start_year
from ffa.errors import ValidationFailure
from ffa.identity import ManagerId
from ffa.scoring.live_points import PeriodTotal
from ffa.standings.rank import DRAW_POINTS, WIN_POINTS, MatchRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RatingFormula:
    version: str
    league_title_value: float
    cup_value: float
    goblet_value: float
    double_multiplier: float
    treble_multiplier: float
    placement_weight: float  # points per standard deviation above the field mean
    ppg_max: float
    ppg_k: float
    ppg_scale: float
    alpha: float


FFA_RATING_V1 = RatingFormula(
    version="FFA_RATING_V1",
    league_title_value=810.0,
    cup_value=540.0,
    goblet_value=270.0,
    double_multiplier=1.25,
    treble_multiplier=1.4,
    placement_weight=120.0,
    ppg_max=3.0,
    ppg_k=1.4,
    ppg_scale=1000.0,
    alpha=0.1,
)


# =============================================================================
# INPUTS
# =============================================================================


@dataclass(frozen=True)
class SeasonPlacement:
    season: str
    rank: int
    field_size: int


@dataclass(frozen=True)
class SeasonTrophies:
    season: str
    league: bool = False
    cup: bool = False
    goblet: bool = False

    @property
    def count(self) -> int:
        return sum((self.league, self.cup, self.goblet))


@dataclass
class ManagerRatingInput:
    manager: ManagerId
    placements: list[SeasonPlacement] = field(default_factory=list)
    trophies: list[SeasonTrophies] = field(default_factory=list)
    ppg: float = 0.0  # league points per game, 0..3
    plus_g: float = 0.0  # average points scored per period
    games: int = 0
    periods: int = 0

    @property
    def seasons(self) -> list[str]:
        labels = {p.season for p in self.placements} | {t.season for t in self.trophies}
        return sorted(labels, key=season_start_year)


@dataclass(frozen=True)
class FieldStats:
    """Field-wide normalization values."""

    plus_g_mean: float
    plus_g_std: float
    # season -> (mean rank, std rank) for the field that season
    placement: dict[str, tuple[float, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class RatingBreakdown:
    manager: ManagerId
    version: str
    placement: float
    silverware: float
    efficiency: float
    base: float
    modifier: float
    rating: float
    seasons: int


def compute_field_stats(inputs: Iterable[ManagerRatingInput]) -> FieldStats:
    """
    Compute normalization values over the whole field.

    Per-season rank mean/std-dev come from the ranks actually present that
    season. Standard deviations are population (ddof=0).
    """
    inputs = list(inputs)
    if not inputs:
        return FieldStats(plus_g_mean=0.0, plus_g_std=0.0)

    plus_g = np.array([m.plus_g for m in inputs], dtype=float)

    ranks_by_season: dict[str, list[int]] = {}
    sizes: dict[str, int] = {}
    for manager in inputs:
        for placement in manager.placements:
            ranks_by_season.setdefault(placement.season, []).append(placement.rank)
            sizes[placement.season] = max(sizes.get(placement.season, 0), placement.field_size)

    placement = {}
    for season, ranks in ranks_by_season.items():
        if len(ranks) < sizes[season]:
            # Part of that season's field is not being rated
            placement[season] = uniform_rank_stats(sizes[season])
        else:
            placement[season] = (float(np.mean(ranks)), float(np.std(ranks)))
    return FieldStats(
        plus_g_mean=float(np.mean(plus_g)),
        plus_g_std=float(np.std(plus_g)),
        placement=placement,
    )


# =============================================================================
# COMPONENTS
# =============================================================================


def uniform_rank_stats(field_size: int) -> tuple[float, float]:
    """Mean and population std-dev of ranks 1..N."""
    if field_size < 1:
        return 0.0, 0.0
    return (field_size + 1) / 2.0, math.sqrt((field_size * field_size - 1) / 12.0)


def placement_score(
    placements: Iterable[SeasonPlacement],
    field_stats: FieldStats,
    formula: RatingFormula = FFA_RATING_V1,
) -> float:
    """Sum over seasons of weight * (mean rank - rank) / std rank."""
    score = 0.0
    for placement in placements:
        if placement.rank < 1:
            raise ValidationFailure(f"Invalid rank {placement.rank} in {placement.season}")
        mean, std = field_stats.placement.get(placement.season) or uniform_rank_stats(
            placement.field_size
        )
        if std == 0:
            continue
        score += formula.placement_weight * (mean - placement.rank) / std
    return score


def silverware_score(
    trophies: Iterable[SeasonTrophies],
    formula: RatingFormula = FFA_RATING_V1,
) -> float:
    score = 0.0
    for season in trophies:
        base = 0.0
        if season.league:
            base += formula.league_title_value
        if season.cup:
            base += formula.cup_value
        if season.goblet:
            base += formula.goblet_value
        if season.count == 3:
            base *= formula.treble_multiplier
        elif season.count == 2:
            base *= formula.double_multiplier
        score += base
    return score


def efficiency_score(ppg: float, formula: RatingFormula = FFA_RATING_V1) -> float:
    """Saturating PPG curve, equal to ppg_scale at ppg_max."""
    if ppg < 0:
        raise ValidationFailure(f"Points per game cannot be negative, got {ppg}")
    k = formula.ppg_k
    return formula.ppg_scale * (1 - math.exp(-k * ppg / formula.ppg_max)) / (1 - math.exp(-k))


def plus_g_modifier(
    plus_g: float,
    field_stats: FieldStats,
    formula: RatingFormula = FFA_RATING_V1,
) -> float:
    """1 + alpha * tanh(z); z is 0 when the field has no spread."""
    if field_stats.plus_g_std == 0:
        z = 0.0
    else:
        z = (plus_g - field_stats.plus_g_mean) / field_stats.plus_g_std
    return 1 + formula.alpha * math.tanh(z)


def compute_rating(
    inputs: ManagerRatingInput,
    field_stats: FieldStats,
    formula: RatingFormula = FFA_RATING_V1,
) -> RatingBreakdown:
    """
    Compute a manager's rating and its component breakdown.

    Args:
        inputs: Placement/trophy history plus ppg and +/G
        field_stats: Field normalization values (compute_field_stats)
        formula: Versioned constants

    Returns:
        RatingBreakdown tagged with formula.version
    """
    placement = placement_score(inputs.placements, field_stats, formula)
    silverware = silverware_score(inputs.trophies, formula)
    efficiency = efficiency_score(inputs.ppg, formula)
    base = placement + silverware + efficiency
    modifier = plus_g_modifier(inputs.plus_g, field_stats, formula)
    return RatingBreakdown(
        manager=inputs.manager,
        version=formula.version,
        placement=round(placement, 4),
        silverware=round(silverware, 4),
        efficiency=round(efficiency, 4),
        base=round(base, 4),
        modifier=round(modifier, 6),
        rating=round(base * modifier, 2),
        seasons=len(inputs.seasons),
    )


def compute_ratings(
    inputs: Iterable[ManagerRatingInput],
    formula: RatingFormula = FFA_RATING_V1,
) -> dict[ManagerId, RatingBreakdown]:
    """Rate a whole field against its own statistics."""
    inputs = list(inputs)
    field_stats = compute_field_stats(inputs)
    ratings = {m.manager: compute_rating(m, field_stats, formula) for m in inputs}
    logger.info(f"[RATING] Computed {len(ratings)} ratings with {formula.version}")
    return ratings


# =============================================================================
# INPUT DERIVATION (current-season data)
# =============================================================================


def league_ppg(matches: Iterable[MatchRecord], manager: ManagerId) -> tuple[float, int]:
    """League points per game over matches with recorded points. Returns (ppg, games)."""
    points = 0
    games = 0
    for match in matches:
        if match.home_points is None or match.away_points is None:
            continue
        if manager == match.home:
            scored, conceded = match.home_points, match.away_points
        elif manager == match.away:
            scored, conceded = match.away_points, match.home_points
        else:
            continue
        games += 1
        if scored > conceded:
            points += WIN_POINTS
        elif scored == conceded:
            points += DRAW_POINTS
    return (points / games if games else 0.0), games


def average_period_points(totals: Iterable[PeriodTotal], manager: ManagerId) -> tuple[float, int]:
    """Average finalized points per period ("+/G"). Returns (average, periods)."""
    values = [t.total for t in totals if t.manager == manager and not t.provisional]
    if not values:
        return 0.0, 0
    return float(np.mean(values)), len(values)


def derive_rating_input(
    manager: ManagerId,
    matches: Iterable[MatchRecord],
    totals: Iterable[PeriodTotal],
    placements: Optional[list[SeasonPlacement]] = None,
    trophies: Optional[list[SeasonTrophies]] = None,
) -> ManagerRatingInput:
    """Build a manager's rating input from persisted outcomes."""
    ppg, games = league_ppg(matches, manager)
    plus_g, periods = average_period_points(totals, manager)
    return ManagerRatingInput(
        manager=manager,
        placements=list(placements or []),
        trophies=list(trophies or []),
        ppg=ppg,
        plus_g=plus_g,
        games=games,
        periods=periods,
    )


def combine_inputs(
    legacy: Optional[ManagerRatingInput],
    derived: ManagerRatingInput,
    config: SeasonConfig,
) -> ManagerRatingInput:
    """
    Merge legacy history with live-derived data at the season cutoff.

    Placements and trophies before the cutoff season come only from the
    legacy input, those from the cutoff onwards only from derived data.
    ppg and +/G are weighted by games and periods played.
    """
    cutoff = season_start_year(config.historical_cutoff_season)

    def before(season: str) -> bool:
        return season_start_year(season) < cutoff

    if legacy is None:
        legacy = ManagerRatingInput(manager=derived.manager)
    if legacy.manager != derived.manager:
        raise ValidationFailure(
            f"Cannot combine rating inputs of {legacy.manager} and {derived.manager}"
        )

    games = legacy.games + derived.games
    periods = legacy.periods + derived.periods
    ppg = (legacy.ppg * legacy.games + derived.ppg * derived.games) / games if games else 0.0
    plus_g = (
        (legacy.plus_g * legacy.periods + derived.plus_g * derived.periods) / periods
        if periods
        else 0.0
    )
    return ManagerRatingInput(
        manager=derived.manager,
        placements=[p for p in legacy.placements if before(p.season)]
        + [p for p in derived.placements if not before(p.season)],
        trophies=[t for t in legacy.trophies if before(t.season)]
        + [t for t in derived.trophies if not before(t.season)],
        ppg=ppg,
        plus_g=plus_g,
        games=games,
        periods=periods,
    )
