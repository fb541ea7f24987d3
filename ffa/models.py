"""Database models using SQLModel.

Every row that refers to a manager stores the canonical manager name; the
season-specific provider ids live only in `entries`.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)



class Entry(SQLModel, table=True):
    """One manager's team in one season, with its provider ids."""

    __tablename__ = "entries"
    __table_args__ = (
        UniqueConstraint("season", "manager", name="uq_entry_season_manager"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True, description="e.g. '2025/26'")
    manager: str = Field(max_length=50, index=True, description="Canonical manager name")
    entry_id: int = Field(description="Provider entry id (picks endpoint)")
    league_entry_id: int = Field(description="Provider league-entry id (fixture records)")
    entry_name: str = Field(default="", max_length=255)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Period(SQLModel, table=True):
    """Scheduling flags for a gameweek."""

    __tablename__ = "periods"
    __table_args__ = (
        UniqueConstraint("season", "number", name="uq_period_season_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True)
    number: int = Field(index=True)
    is_current: bool = Field(default=False)
    finalized: bool = Field(default=False)
    stale: bool = Field(default=False, description="Last refresh could not reach the feed")
    refreshed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class LeagueFixture(SQLModel, table=True):
    """Head-to-head league fixture with recorded points."""

    __tablename__ = "league_fixtures"
    __table_args__ = (
        UniqueConstraint("season", "period", "home", "away", name="uq_fixture"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True)
    period: int = Field(index=True)
    home: str = Field(max_length=50)
    away: str = Field(max_length=50)
    home_points: Optional[int] = Field(default=None, description="NULL until recorded")
    away_points: Optional[int] = Field(default=None, description="NULL until recorded")
    finished: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class PeriodTotalRecord(SQLModel, table=True):
    """Computed period total. Immutable once finalized."""

    __tablename__ = "period_totals"
    __table_args__ = (
        UniqueConstraint("season", "manager", "period", name="uq_total_season_manager_period"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True)
    manager: str = Field(max_length=50, index=True)
    period: int = Field(index=True)
    total: int
    captain_points: int = Field(default=0)
    bench_points: int = Field(default=0)
    captain_player_id: Optional[int] = Field(default=None)
    captaincy: str = Field(max_length=20, description="captain, vice_captain, carried_forward, forfeited")
    finalized: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class StandingRowRecord(SQLModel, table=True):
    """Derived group standing row, recomputed each refresh."""

    __tablename__ = "standing_rows"
    __table_args__ = (
        UniqueConstraint("season", "competition", "manager", name="uq_standing"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True)
    competition: str = Field(max_length=30, index=True)
    manager: str = Field(max_length=50)
    points: int
    tiebreak: int
    periods_played: int
    rank: int
    advancing: bool
    complete: bool = Field(default=False, description="Every group period finalized")
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class MatchupRecord(SQLModel, table=True):
    """Two-leg knockout matchup."""

    __tablename__ = "matchups"
    __table_args__ = (
        UniqueConstraint("season", "competition", "round", "matchup_number", name="uq_matchup"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    season: str = Field(max_length=10, index=True)
    competition: str = Field(max_length=30, index=True)
    round: int
    matchup_number: int
    leg_1_period: int
    leg_2_period: int
    team_1: Optional[str] = Field(default=None, max_length=50)
    team_2: Optional[str] = Field(default=None, max_length=50)
    team_1_seed: Optional[int] = Field(default=None)
    team_2_seed: Optional[int] = Field(default=None)
    team_1_leg_1_points: Optional[int] = Field(default=None)
    team_2_leg_1_points: Optional[int] = Field(default=None)
    team_1_leg_2_points: Optional[int] = Field(default=None)
    team_2_leg_2_points: Optional[int] = Field(default=None)
    team_1_leg_1_captain_points: Optional[int] = Field(default=None)
    team_2_leg_1_captain_points: Optional[int] = Field(default=None)
    team_1_leg_2_captain_points: Optional[int] = Field(default=None)
    team_2_leg_2_captain_points: Optional[int] = Field(default=None)
    winner: Optional[str] = Field(default=None, max_length=50)
    tie_break_method: Optional[str] = Field(default=None, max_length=20)
    status: str = Field(max_length=20, default="awaiting_teams")
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class RatingRecord(SQLModel, table=True):
    """Rating row with component breakdown. Insert-only; log order is the primary key."""

    __tablename__ = "ratings"

    id: Optional[int] = Field(default=None, primary_key=True)
    manager: str = Field(max_length=50, index=True)
    version: str = Field(max_length=30, description="e.g. 'FFA_RATING_V1'")
    season: str = Field(max_length=10)
    period: int
    rating: float
    placement: float
    silverware: float
    efficiency: float
    base: float
    modifier: float
    seasons: int
    recorded_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class RatingDeltaRecord(SQLModel, table=True):
    """Attributed rating change. Insert-only."""

    __tablename__ = "rating_deltas"

    id: Optional[int] = Field(default=None, primary_key=True)
    rating_id: int = Field(foreign_key="ratings.id", index=True)
    manager: str = Field(max_length=50, index=True)
    period: int
    delta: float
    source: str = Field(max_length=30, description="league, cup, goblet, head_to_head, periodic_recompute")
    recorded_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
