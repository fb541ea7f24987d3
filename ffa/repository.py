"""
Persistence for computed league state.

Reads return domain objects keyed by ManagerId; writes go through upsert so
reruns of a refresh converge on the same rows. Finalized period totals are
never overwritten, and rating rows are insert-only.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ffa.db_utils import bulk_upsert, upsert
from ffa.feed.base import Fixture, LeagueEntry
from ffa.identity import ManagerId
from ffa.knockout.bracket import Bracket, Matchup
from ffa.models import (
    Entry,
    LeagueFixture,
    MatchupRecord,
    Period,
    PeriodTotalRecord,
    RatingDeltaRecord,
    RatingRecord,
    StandingRowRecord,
    utcnow,
)
from ffa.rating.engine import RatingBreakdown
from ffa.rating.history import DeltaSource, RatingHistoryEntry, RatingLog
from ffa.scoring.live_points import LivePoints, PeriodTotal
from ffa.standings.groups import GroupStage, StandingRow
from ffa.standings.rank import MatchRecord

logger = logging.getLogger(__name__)

MATCHUP_FIELDS = (
    "leg_1_period",
    "leg_2_period",
    "team_1",
    "team_2",
    "team_1_seed",
    "team_2_seed",
    "team_1_leg_1_points",
    "team_2_leg_1_points",
    "team_1_leg_2_points",
    "team_2_leg_2_points",
    "team_1_leg_1_captain_points",
    "team_2_leg_1_captain_points",
    "team_1_leg_2_captain_points",
    "team_2_leg_2_captain_points",
    "winner",
    "tie_break_method",
    "status",
)


def _fresh(*entities):
    """ORM select that refreshes objects already loaded in the session."""
    return select(*entities).execution_options(populate_existing=True)


def _manager(value: Optional[str]) -> Optional[ManagerId]:
    return ManagerId(value) if value else None


class LeagueRepository:
    """Season-scoped access to the league tables."""

    def __init__(self, session: AsyncSession, season: str):
        self.session = session
        self.season = season

    async def commit(self) -> None:
        await self.session.commit()

    # =========================================================================
    # ENTRIES AND PERIODS
    # =========================================================================

    async def save_entries(self, entries: dict[ManagerId, LeagueEntry]) -> int:
        now = utcnow()
        return await bulk_upsert(
            self.session,
            Entry,
            [
                {
                    "season": self.season,
                    "manager": str(manager),
                    "entry_id": entry.entry_id,
                    "league_entry_id": entry.league_entry_id,
                    "entry_name": entry.entry_name,
                    "updated_at": now,
                }
                for manager, entry in entries.items()
            ],
            conflict_columns=["season", "manager"],
        )

    async def list_managers(self) -> list[ManagerId]:
        result = await self.session.execute(
            select(Entry.manager).where(Entry.season == self.season).order_by(Entry.manager)
        )
        return [ManagerId(m) for m in result.scalars().all()]

    async def save_period(
        self,
        number: int,
        is_current: Optional[bool] = None,
        finalized: Optional[bool] = None,
        stale: bool = False,
    ) -> None:
        """Upsert period flags. None leaves a flag as stored (False for new rows)."""
        values = {
            "season": self.season,
            "number": number,
            "is_current": bool(is_current),
            "finalized": bool(finalized),
            "stale": stale,
            "refreshed_at": utcnow(),
        }
        update_columns = ["stale", "refreshed_at"]
        if is_current is not None:
            update_columns.append("is_current")
        if finalized is not None:
            update_columns.append("finalized")
        await upsert(
            self.session,
            Period,
            values,
            conflict_columns=["season", "number"],
            update_columns=update_columns,
        )
        if is_current:
            # Only one current period per season
            await self.session.execute(
                update(Period)
                .where(Period.season == self.season, Period.number != number)
                .values(is_current=False)
            )

    async def get_period(self, number: int) -> Optional[Period]:
        result = await self.session.execute(
            _fresh(Period).where(Period.season == self.season, Period.number == number)
        )
        return result.scalar_one_or_none()

    async def current_period(self) -> Optional[int]:
        result = await self.session.execute(
            select(Period.number).where(Period.season == self.season, Period.is_current.is_(True))
        )
        return result.scalars().first()

    async def latest_finalized_period(self) -> Optional[int]:
        result = await self.session.execute(
            select(func.max(Period.number)).where(
                Period.season == self.season, Period.finalized.is_(True)
            )
        )
        return result.scalar()

    # =========================================================================
    # FIXTURES
    # =========================================================================

    async def save_fixtures(self, fixtures: Iterable[Fixture]) -> int:
        now = utcnow()
        return await bulk_upsert(
            self.session,
            LeagueFixture,
            [
                {
                    "season": self.season,
                    "period": f.period,
                    "home": str(f.home),
                    "away": str(f.away),
                    "home_points": f.home_points,
                    "away_points": f.away_points,
                    "finished": f.finished,
                    "updated_at": now,
                }
                for f in fixtures
            ],
            conflict_columns=["season", "period", "home", "away"],
        )

    async def list_match_records(self, through_period: Optional[int] = None) -> list[MatchRecord]:
        query = _fresh(LeagueFixture).where(LeagueFixture.season == self.season)
        if through_period is not None:
            query = query.where(LeagueFixture.period <= through_period)
        result = await self.session.execute(
            query.order_by(LeagueFixture.period, LeagueFixture.home)
        )
        return [
            MatchRecord(
                period=row.period,
                home=ManagerId(row.home),
                away=ManagerId(row.away),
                home_points=row.home_points,
                away_points=row.away_points,
            )
            for row in result.scalars().all()
        ]

    # =========================================================================
    # PERIOD TOTALS
    # =========================================================================

    async def save_period_totals(self, live: LivePoints) -> int:
        """Upsert totals; rows already finalized are left untouched."""
        now = utcnow()
        return await bulk_upsert(
            self.session,
            PeriodTotalRecord,
            [
                {
                    "season": self.season,
                    "manager": str(t.manager),
                    "period": t.period,
                    "total": t.total,
                    "captain_points": t.captain_points,
                    "bench_points": t.bench_points,
                    "captain_player_id": t.captain_player_id,
                    "captaincy": t.captaincy,
                    "finalized": not t.provisional,
                    "updated_at": now,
                }
                for t in live.totals.values()
            ],
            conflict_columns=["season", "manager", "period"],
            update_where=PeriodTotalRecord.__table__.c.finalized.is_(False),
        )

    async def get_period_totals(
        self,
        start_period: Optional[int] = None,
        end_period: Optional[int] = None,
    ) -> list[PeriodTotal]:
        query = _fresh(PeriodTotalRecord).where(PeriodTotalRecord.season == self.season)
        if start_period is not None:
            query = query.where(PeriodTotalRecord.period >= start_period)
        if end_period is not None:
            query = query.where(PeriodTotalRecord.period <= end_period)
        result = await self.session.execute(
            query.order_by(PeriodTotalRecord.period, PeriodTotalRecord.manager)
        )
        return [
            PeriodTotal(
                manager=ManagerId(row.manager),
                period=row.period,
                total=row.total,
                captain_points=row.captain_points,
                bench_points=row.bench_points,
                captain_player_id=row.captain_player_id,
                captaincy=row.captaincy,
                provisional=not row.finalized,
            )
            for row in result.scalars().all()
        ]

    async def totals_for_period(self, period: int) -> dict[ManagerId, PeriodTotal]:
        totals = await self.get_period_totals(period, period)
        return {t.manager: t for t in totals}

    # =========================================================================
    # GROUP STANDINGS
    # =========================================================================

    async def save_standings(self, competition: str, stage: GroupStage) -> int:
        now = utcnow()
        return await bulk_upsert(
            self.session,
            StandingRowRecord,
            [
                {
                    "season": self.season,
                    "competition": competition,
                    "manager": str(row.manager),
                    "points": row.points,
                    "tiebreak": row.tiebreak,
                    "periods_played": row.periods_played,
                    "rank": row.rank,
                    "advancing": row.advancing,
                    "complete": stage.complete,
                    "updated_at": now,
                }
                for row in stage.rows
            ],
            conflict_columns=["season", "competition", "manager"],
        )

    async def get_standings(self, competition: str) -> tuple[list[StandingRow], bool]:
        """Stored rows in rank order, plus whether the group stage is complete."""
        result = await self.session.execute(
            _fresh(StandingRowRecord)
            .where(
                StandingRowRecord.season == self.season,
                StandingRowRecord.competition == competition,
            )
            .order_by(StandingRowRecord.rank)
        )
        records = result.scalars().all()
        rows = [
            StandingRow(
                manager=ManagerId(r.manager),
                points=r.points,
                tiebreak=r.tiebreak,
                periods_played=r.periods_played,
                rank=r.rank,
                advancing=r.advancing,
            )
            for r in records
        ]
        return rows, bool(records) and all(r.complete for r in records)

    # =========================================================================
    # BRACKET
    # =========================================================================

    async def save_bracket(self, bracket: Bracket) -> int:
        now = utcnow()
        values_list = []
        for m in bracket.all_matchups():
            values = {
                "season": self.season,
                "competition": m.competition,
                "round": m.round,
                "matchup_number": m.matchup_number,
                "updated_at": now,
            }
            for name in MATCHUP_FIELDS:
                value = getattr(m, name)
                values[name] = str(value) if name in ("team_1", "team_2", "winner") and value else value
            values_list.append(values)
        return await bulk_upsert(
            self.session,
            MatchupRecord,
            values_list,
            conflict_columns=["season", "competition", "round", "matchup_number"],
            # A completed matchup is immutable
            update_where=MatchupRecord.__table__.c.status != "complete",
        )

    async def load_bracket(self, competition: str) -> Optional[Bracket]:
        result = await self.session.execute(
            _fresh(MatchupRecord).where(
                MatchupRecord.season == self.season,
                MatchupRecord.competition == competition,
            )
        )
        records = result.scalars().all()
        if not records:
            return None
        matchups = []
        for r in records:
            fields = {name: getattr(r, name) for name in MATCHUP_FIELDS}
            for name in ("team_1", "team_2", "winner"):
                fields[name] = _manager(fields[name])
            matchups.append(
                Matchup(
                    competition=r.competition,
                    round=r.round,
                    matchup_number=r.matchup_number,
                    **fields,
                )
            )
        return Bracket(competition, matchups)

    # =========================================================================
    # RATINGS
    # =========================================================================

    async def append_rating(self, entry: RatingHistoryEntry) -> RatingRecord:
        """Insert one rating row and its attributed delta."""
        breakdown: RatingBreakdown = entry.breakdown
        record = RatingRecord(
            manager=str(entry.manager),
            version=entry.version,
            season=entry.season,
            period=entry.period,
            rating=entry.rating,
            placement=breakdown.placement if breakdown else 0.0,
            silverware=breakdown.silverware if breakdown else 0.0,
            efficiency=breakdown.efficiency if breakdown else 0.0,
            base=breakdown.base if breakdown else 0.0,
            modifier=breakdown.modifier if breakdown else 1.0,
            seasons=breakdown.seasons if breakdown else 0,
            recorded_at=entry.recorded_at or utcnow(),
        )
        self.session.add(record)
        await self.session.flush()
        self.session.add(
            RatingDeltaRecord(
                rating_id=record.id,
                manager=record.manager,
                period=entry.period,
                delta=entry.delta,
                source=entry.source.value,
                recorded_at=record.recorded_at,
            )
        )
        return record

    async def load_rating_log(self) -> RatingLog:
        result = await self.session.execute(
            _fresh(RatingRecord, RatingDeltaRecord)
            .join(RatingDeltaRecord, RatingDeltaRecord.rating_id == RatingRecord.id)
            .order_by(RatingRecord.id)
        )
        entries = []
        for rating, delta in result.all():
            manager = ManagerId(rating.manager)
            entries.append(
                RatingHistoryEntry(
                    sequence=rating.id,
                    manager=manager,
                    version=rating.version,
                    season=rating.season,
                    period=rating.period,
                    rating=rating.rating,
                    delta=delta.delta,
                    source=DeltaSource(delta.source),
                    breakdown=RatingBreakdown(
                        manager=manager,
                        version=rating.version,
                        placement=rating.placement,
                        silverware=rating.silverware,
                        efficiency=rating.efficiency,
                        base=rating.base,
                        modifier=rating.modifier,
                        rating=rating.rating,
                        seasons=rating.seasons,
                    ),
                    recorded_at=rating.recorded_at,
                )
            )
        return RatingLog(entries)
