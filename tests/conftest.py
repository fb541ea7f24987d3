"""Shared fixtures: an in-memory SQLite database and a scripted feed per test."""

from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from ffa.config import SeasonConfig
from ffa.database import build_engine, init_db
from ffa.errors import ProviderUnavailable
from ffa.feed.adapter import FeedAdapter
from ffa.feed.base import FeedProvider, LeagueEntry, LineupPick, PeriodStatus, PlayerPeriodScore
from ffa.refresh import RefreshService
from ffa.repository import LeagueRepository


SEASON = "2025/26"
NAMES = ["Patrick", "Matthew", "Marco", "David"]


class ScriptedProvider(FeedProvider):
    """
    Four-entry league driven by a points script.

    Entry i owns players 100*i+1..100*i+11 and captains the first; only the
    captain scores, so an entry's period total is twice its scripted value.
    Fixtures are entry 1 v 2 and 3 v 4 every period.
    """

    def __init__(self):
        self.script: dict[int, list[int]] = {}
        self.current = 1
        self.finalized_through = 0
        self.record_fixture_points = True
        self.fail: Optional[Exception] = None

    def _check(self):
        if self.fail is not None:
            raise self.fail

    async def get_period_status(self):
        self._check()
        return PeriodStatus(current=self.current, finalized_through=self.finalized_through)

    async def get_league_entries(self):
        self._check()
        return [
            LeagueEntry(entry_id=100 + i, league_entry_id=i, manager_name=name, entry_name=f"{name} FC")
            for i, name in enumerate(NAMES, start=1)
        ]

    async def get_fixtures(self, period=None):
        self._check()
        fixtures = []
        for p in sorted(self.script) if period is None else [period]:
            values = self.script.get(p, [0, 0, 0, 0])
            for home, away in ((1, 2), (3, 4)):
                recorded = self.record_fixture_points and p <= self.finalized_through
                fixtures.append({
                    "event": p,
                    "league_entry_1": home,
                    "league_entry_2": away,
                    "league_entry_1_points": 2 * values[home - 1] if recorded else None,
                    "league_entry_2_points": 2 * values[away - 1] if recorded else None,
                    "finished": recorded,
                })
        return fixtures

    async def get_live_scores(self, period):
        self._check()
        values = self.script.get(period, [0, 0, 0, 0])
        return {
            100 * i + 1: PlayerPeriodScore(player_id=100 * i + 1, period=period, points=value, minutes=90, finished=True)
            for i, value in enumerate(values, start=1)
        }

    async def get_lineup(self, entry_id, period):
        self._check()
        i = entry_id - 100
        return [
            LineupPick(player_id=100 * i + slot, slot=slot, is_captain=slot == 1, is_vice_captain=slot == 2)
            for slot in range(1, 16)
        ]

    async def close(self):
        pass

    def play(self, period: int, values: list[int], finalized: bool = True) -> None:
        self.script[period] = values
        self.current = period
        self.finalized_through = period if finalized else period - 1

    def go_down(self) -> None:
        self.fail = ProviderUnavailable("bootstrap unavailable: HTTP 503", endpoint="bootstrap")


@pytest.fixture
def season_config() -> SeasonConfig:
    """Cup group stage is period 29 only; the top two meet in a final over 30-31."""
    return SeasonConfig(
        season=SEASON,
        historical_cutoff_season=SEASON,
        canonical_managers=("PATRICK", "MATT", "MARCO", "DAVID"),
        manager_aliases=(("MATTHEW", "MATT"),),
        cup_start_period=29,
        group_stage_periods=1,
        group_advance_pct=0.5,
    )


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def refresh_service(provider, season_config) -> RefreshService:
    adapter = FeedAdapter(provider, season_config.build_resolver())
    return RefreshService(adapter, season_config)


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def repo(session):
    return LeagueRepository(session, SEASON)
