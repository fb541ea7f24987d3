"""Tests for persistence of computed league state (in-memory SQLite)."""

from datetime import timedelta

import pytest

from ffa.feed.base import Fixture, LeagueEntry
from ffa.identity import ManagerId
from ffa.knockout.bracket import COMPLETE, Bracket
from ffa.models import Entry, Period, RatingRecord, utcnow
from ffa.rating.engine import RatingBreakdown
from ffa.rating.history import DeltaSource, RatingLog
from ffa.scoring.live_points import CAPTAIN, LivePoints, PeriodTotal
from ffa.standings.groups import compute_group_standings


PATRICK = ManagerId("PATRICK")
DAVID = ManagerId("DAVID")
MARCO = ManagerId("MARCO")
MAX = ManagerId("MAX")


def live(period, points, provisional=True) -> LivePoints:
    return LivePoints(
        period=period,
        provisional=provisional,
        totals={
            manager: PeriodTotal(
                manager=manager,
                period=period,
                total=total,
                captain_points=total // 4,
                captain_player_id=7,
                captaincy=CAPTAIN,
                provisional=provisional,
            )
            for manager, total in points.items()
        },
    )


class TestEntriesAndPeriods:
    """Test entry and period bookkeeping."""

    @pytest.mark.asyncio
    async def test_entries_round_trip(self, repo):
        await repo.save_entries({
            PATRICK: LeagueEntry(entry_id=101, league_entry_id=1, manager_name="Patrick", entry_name="Pat FC"),
            DAVID: LeagueEntry(entry_id=102, league_entry_id=2, manager_name="David", entry_name="Dave XI"),
        })
        await repo.commit()
        assert await repo.list_managers() == [DAVID, PATRICK]

    @pytest.mark.asyncio
    async def test_single_current_period(self, repo):
        await repo.save_period(30, is_current=True)
        await repo.save_period(31, is_current=True)
        await repo.commit()
        assert await repo.current_period() == 31
        assert (await repo.get_period(30)).is_current is False

    @pytest.mark.asyncio
    async def test_unset_flags_are_preserved(self, repo):
        await repo.save_period(30, finalized=True)
        await repo.save_period(30, stale=True)
        await repo.commit()
        period = await repo.get_period(30)
        assert period.finalized is True
        assert period.stale is True
        assert await repo.latest_finalized_period() == 30


class TestFixtures:
    @pytest.mark.asyncio
    async def test_fixtures_round_trip_and_update(self, repo):
        await repo.save_fixtures([
            Fixture(period=30, home=PATRICK, away=DAVID, home_points=None, away_points=None),
            Fixture(period=31, home=DAVID, away=PATRICK),
        ])
        await repo.save_fixtures([
            Fixture(period=30, home=PATRICK, away=DAVID, home_points=55, away_points=48, finished=True),
        ])
        await repo.commit()

        records = await repo.list_match_records(through_period=30)
        assert len(records) == 1
        assert records[0].home == PATRICK
        assert isinstance(records[0].home, ManagerId)
        assert (records[0].home_points, records[0].away_points) == (55, 48)
        assert len(await repo.list_match_records()) == 2


class TestPeriodTotals:
    """Test provisional overwrite and finalized immutability."""

    @pytest.mark.asyncio
    async def test_provisional_rows_are_overwritten(self, repo):
        await repo.save_period_totals(live(30, {PATRICK: 40, DAVID: 30}))
        await repo.save_period_totals(live(30, {PATRICK: 52, DAVID: 31}))
        await repo.commit()
        totals = await repo.totals_for_period(30)
        assert totals[PATRICK].total == 52
        assert totals[PATRICK].provisional is True
        assert totals[PATRICK].captaincy == CAPTAIN

    @pytest.mark.asyncio
    async def test_finalized_rows_never_change(self, repo):
        await repo.save_period_totals(live(30, {PATRICK: 52, DAVID: 31}, provisional=False))
        changed = await repo.save_period_totals(live(30, {PATRICK: 10, DAVID: 10}))
        await repo.commit()
        assert changed == 0
        totals = await repo.totals_for_period(30)
        assert totals[PATRICK].total == 52
        assert totals[PATRICK].provisional is False

    @pytest.mark.asyncio
    async def test_range_query(self, repo):
        for period in (29, 30, 31):
            await repo.save_period_totals(live(period, {PATRICK: period}, provisional=False))
        await repo.commit()
        totals = await repo.get_period_totals(30, 31)
        assert [t.period for t in totals] == [30, 31]


class TestStandings:
    @pytest.mark.asyncio
    async def test_standings_round_trip(self, repo):
        totals = [
            PeriodTotal(manager=m, period=p, total=pts, captain_points=5, provisional=False)
            for p in (29, 30)
            for m, pts in ((PATRICK, 50), (DAVID, 40), (MARCO, 30))
        ]
        stage = compute_group_standings(totals, 29, 30)
        await repo.save_standings("cup", stage)
        await repo.commit()

        rows, complete = await repo.get_standings("cup")
        assert rows == stage.rows
        assert complete is True
        assert await repo.get_standings("other") == ([], False)


class TestBracketPersistence:
    """Test matchup upserts and completed-matchup immutability."""

    @pytest.mark.asyncio
    async def test_bracket_round_trip(self, repo):
        bracket = Bracket.generate("cup", [PATRICK, DAVID, MARCO, MAX], first_leg_period=33)
        bracket.record_leg(1, 1, 1, 50, 40, 10, 8)
        bracket.record_leg(1, 1, 2, 50, 40, 10, 8)
        await repo.save_bracket(bracket)
        await repo.commit()

        loaded = await repo.load_bracket("cup")
        assert loaded.all_matchups() == bracket.all_matchups()
        assert loaded.matchup(2, 1).team_1 == PATRICK
        assert isinstance(loaded.matchup(1, 1).winner, ManagerId)
        assert await repo.load_bracket("other") is None

    @pytest.mark.asyncio
    async def test_completed_matchup_not_overwritten(self, repo):
        bracket = Bracket.generate("cup", [PATRICK, DAVID], first_leg_period=39)
        bracket.record_leg(1, 1, 1, 50, 40)
        bracket.record_leg(1, 1, 2, 50, 40)
        await repo.save_bracket(bracket)

        tampered = bracket.matchup(1, 1)
        tampered.winner = DAVID
        tampered.team_1_leg_2_points = 0
        await repo.save_bracket(bracket)
        await repo.commit()

        loaded = (await repo.load_bracket("cup")).matchup(1, 1)
        assert loaded.status == COMPLETE
        assert loaded.winner == PATRICK
        assert loaded.team_1_leg_2_points == 50


class TestRatingPersistence:
    @pytest.mark.asyncio
    async def test_rating_log_round_trip(self, repo):
        log = RatingLog()
        for manager, rating, period in ((PATRICK, 1200.5, 30), (DAVID, 950.0, 30), (PATRICK, 1188.25, 31)):
            entry = log.append(
                RatingBreakdown(
                    manager=manager,
                    version="FFA_RATING_V1",
                    placement=100.0,
                    silverware=540.0,
                    efficiency=rating - 640.0,
                    base=rating,
                    modifier=1.0,
                    rating=rating,
                    seasons=2,
                ),
                "2025/26",
                period,
                DeltaSource.CUP if period == 31 else DeltaSource.LEAGUE,
            )
            await repo.append_rating(entry)
        await repo.commit()

        loaded = await repo.load_rating_log()
        assert [(e.sequence, e.manager, e.rating, e.delta, e.source) for e in loaded.entries] == [
            (e.sequence, e.manager, e.rating, e.delta, e.source) for e in log.entries
        ]
        assert loaded.history(PATRICK)[-1].delta == -12.25
        assert loaded.latest()[PATRICK].breakdown.silverware == 540.0

    @pytest.mark.asyncio
    async def test_overlapping_refreshes_both_persist(self, repo):
        """Two refreshes that loaded the same log append without colliding."""
        first, second = await repo.load_rating_log(), await repo.load_rating_log()
        for log, rating in ((first, 1000.0), (second, 1010.0)):
            entry = log.append(
                RatingBreakdown(
                    manager=PATRICK,
                    version="FFA_RATING_V1",
                    placement=100.0,
                    silverware=0.0,
                    efficiency=rating - 100.0,
                    base=rating,
                    modifier=1.0,
                    rating=rating,
                    seasons=1,
                ),
                "2025/26",
                30,
                DeltaSource.LEAGUE,
            )
            assert entry.sequence == 1
            await repo.append_rating(entry)
            await repo.commit()

        loaded = await repo.load_rating_log()
        assert [e.rating for e in loaded.history(PATRICK)] == [1000.0, 1010.0]
        assert loaded.latest()[PATRICK].rating == 1010.0


class TestTimestamps:
    def test_row_defaults_are_timezone_aware(self):
        entry = Entry(season="2025/26", manager="PATRICK", entry_id=101, league_entry_id=1)
        assert entry.updated_at.tzinfo is not None
        assert utcnow().utcoffset() == timedelta(0)

    def test_timestamp_columns_store_timezone(self):
        for model, column in ((Entry, "updated_at"), (Period, "refreshed_at"), (RatingRecord, "recorded_at")):
            assert model.__table__.c[column].type.timezone is True

    @pytest.mark.asyncio
    async def test_period_refresh_time_written(self, repo):
        await repo.save_period(30, is_current=True)
        await repo.commit()
        assert (await repo.get_period(30)).refreshed_at is not None
