"""Abstract base class and normalized records for live feed providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ffa.errors import ValidationFailure
from ffa.identity import ManagerId


@dataclass(frozen=True)
class LineupPick:
    """One player reference in a lineup."""

    player_id: int
    slot: int  # 1..starter_slots = starter, above = bench
    is_captain: bool = False
    is_vice_captain: bool = False


@dataclass
class LineupSelection:
    """A manager's lineup for one period."""

    manager: ManagerId
    period: int
    picks: list[LineupPick]

    def validate(self) -> "LineupSelection":
        """
        Check captaincy flags.

        Valid only if at most one captain and one vice-captain are flagged,
        and they are distinct players. Raises ValidationFailure otherwise;
        a lineup is never silently coerced.
        """
        player_ids = [p.player_id for p in self.picks]
        if len(set(player_ids)) != len(player_ids):
            raise ValidationFailure(
                f"Lineup for {self.manager} period {self.period} lists a player twice"
            )
        captains = [p for p in self.picks if p.is_captain]
        vices = [p for p in self.picks if p.is_vice_captain]
        if len(captains) > 1:
            raise ValidationFailure(
                f"Lineup for {self.manager} period {self.period} has {len(captains)} captains"
            )
        if len(vices) > 1:
            raise ValidationFailure(
                f"Lineup for {self.manager} period {self.period} has {len(vices)} vice-captains"
            )
        if captains and vices and captains[0].player_id == vices[0].player_id:
            raise ValidationFailure(
                f"Lineup for {self.manager} period {self.period}: captain and "
                f"vice-captain must be different players (both {captains[0].player_id})"
            )
        return self

    def starters(self, starter_slots: int) -> list[LineupPick]:
        return sorted((p for p in self.picks if p.slot <= starter_slots), key=lambda p: p.slot)

    def bench(self, starter_slots: int) -> list[LineupPick]:
        return sorted((p for p in self.picks if p.slot > starter_slots), key=lambda p: p.slot)


@dataclass(frozen=True)
class PlayerPeriodScore:
    """Raw points for one player in one period, as reported by the feed."""

    player_id: int
    period: int
    points: int
    minutes: int = 0
    finished: bool = False  # player's fixtures for the period are over
    final: bool = False  # period finalized upstream
    bonus: int = 0  # included in points; provisional until confirmed

    @property
    def did_not_feature(self) -> bool:
        return self.finished and self.minutes == 0

    @property
    def bonus_confirmed(self) -> bool:
        return self.finished or self.final or self.minutes >= 60


@dataclass(frozen=True)
class Fixture:
    """A scheduled head-to-head league fixture (already resolved to managers)."""

    period: int
    home: ManagerId
    away: ManagerId
    home_points: Optional[int] = None
    away_points: Optional[int] = None
    finished: bool = False


@dataclass(frozen=True)
class LeagueEntry:
    """Raw league membership record from the provider."""

    entry_id: int
    league_entry_id: int
    manager_name: str
    entry_name: str


@dataclass(frozen=True)
class PeriodStatus:
    """Scheduling flags for the period the provider considers current."""

    current: int
    finalized_through: int  # highest period whose data is final

    def is_finalized(self, period: int) -> bool:
        return period <= self.finalized_through


@dataclass
class FeedSnapshot:
    """Normalized data for one period."""

    period: int
    fixtures: list[Fixture]
    lineups: dict[ManagerId, LineupSelection]
    scores: dict[int, PlayerPeriodScore]
    fetched_at: datetime
    is_current: bool = False
    finalized: bool = False
    stale: bool = False
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class FeedUnavailable:
    """Explicit 'no fresh data' signal. Never a synthetic zero."""

    period: int
    reason: str  # "provider_unavailable" | "rate_limited"
    detail: str = ""
    retry_after: Optional[float] = None
    last_good: Optional[FeedSnapshot] = None


class FeedProvider(ABC):
    """Abstract base class for fantasy data providers."""

    @abstractmethod
    async def get_period_status(self) -> PeriodStatus:
        """Fetch which period is current and which are finalized."""
        pass

    @abstractmethod
    async def get_league_entries(self) -> list[LeagueEntry]:
        """Fetch league membership (entry ids, league-entry ids, names)."""
        pass

    @abstractmethod
    async def get_fixtures(self, period: Optional[int] = None) -> list[dict]:
        """
        Fetch raw H2H fixture records.

        Records reference managers by league-entry id; resolving them is the
        adapter's job.
        """
        pass

    @abstractmethod
    async def get_live_scores(self, period: int) -> dict[int, PlayerPeriodScore]:
        """Fetch live points for every player with data in the period."""
        pass

    @abstractmethod
    async def get_lineup(self, entry_id: int, period: int) -> list[LineupPick]:
        """Fetch one entry's picks for a period."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass

    def invalidate(self) -> None:
        """Drop any per-provider caches before a fresh period fetch."""
