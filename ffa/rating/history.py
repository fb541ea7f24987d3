"""Append-only rating history.

Each recompute appends a row tagged with the triggering period and the
source category that caused the change. The "latest" projection is rebuilt
from the log, never updated in place.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from ffa.identity import ManagerId
from ffa.rating.engine import RatingBreakdown

logger = logging.getLogger(__name__)


class DeltaSource(str, Enum):
    LEAGUE = "league"
    CUP = "cup"
    GOBLET = "goblet"
    HEAD_TO_HEAD = "head_to_head"
    PERIODIC_RECOMPUTE = "periodic_recompute"


@dataclass(frozen=True)
class RatingHistoryEntry:
    sequence: int
    manager: ManagerId
    version: str
    season: str
    period: int
    rating: float
    delta: float
    source: DeltaSource
    breakdown: Optional[RatingBreakdown] = None
    recorded_at: Optional[datetime] = None


class RatingLog:
    """Append-only log of rating rows."""

    def __init__(self, entries: Iterable[RatingHistoryEntry] = ()):
        self._entries: list[RatingHistoryEntry] = sorted(entries, key=lambda e: e.sequence)

    @property
    def entries(self) -> tuple[RatingHistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _previous(self, manager: ManagerId, version: str) -> Optional[RatingHistoryEntry]:
        for entry in reversed(self._entries):
            if entry.manager == manager and entry.version == version:
                return entry
        return None

    def append(
        self,
        breakdown: RatingBreakdown,
        season: str,
        period: int,
        source: DeltaSource,
        recorded_at: Optional[datetime] = None,
    ) -> RatingHistoryEntry:
        """
        Append a rating row.

        Delta is measured against the manager's previous row of the same
        formula version; the first row's delta is the full rating.
        """
        previous = self._previous(breakdown.manager, breakdown.version)
        delta = breakdown.rating - previous.rating if previous else breakdown.rating
        entry = RatingHistoryEntry(
            sequence=(self._entries[-1].sequence + 1) if self._entries else 1,
            manager=breakdown.manager,
            version=breakdown.version,
            season=season,
            period=period,
            rating=breakdown.rating,
            delta=round(delta, 2),
            source=DeltaSource(source),
            breakdown=breakdown,
            recorded_at=recorded_at or datetime.now(timezone.utc),
        )
        self._entries.append(entry)
        return entry

    def append_if_changed(
        self,
        breakdown: RatingBreakdown,
        season: str,
        period: int,
        source: DeltaSource,
    ) -> Optional[RatingHistoryEntry]:
        """Append only when the rating moved; reruns of a refresh stay idempotent."""
        previous = self._previous(breakdown.manager, breakdown.version)
        if previous is not None and previous.rating == breakdown.rating:
            return None
        return self.append(breakdown, season, period, source)

    def latest(self, version: Optional[str] = None) -> dict[ManagerId, RatingHistoryEntry]:
        """Live rating per manager: their last row (optionally of one version)."""
        projection: dict[ManagerId, RatingHistoryEntry] = {}
        for entry in self._entries:
            if version is not None and entry.version != version:
                continue
            projection[entry.manager] = entry
        return projection

    def history(self, manager: ManagerId) -> list[RatingHistoryEntry]:
        return [entry for entry in self._entries if entry.manager == manager]
