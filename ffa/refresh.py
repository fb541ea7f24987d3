"""
Refresh trigger: the only writer of derived state.

One run for a period:

    1. fetch the period through the coalescing feed adapter
    2. compute live points once (single authoritative scoring path)
    3. persist entries, period flags, fixtures and period totals
    4. recompute cup group standings over the group stage range
    5. generate the bracket once the group stage is complete, then record
       finalized leg totals for every knockout period played so far
    6. on finalized periods, recompute ratings and append changed rows;
       league and goblet titles are awarded once the final period is in

If the feed is unavailable nothing is computed; the period is flagged stale
and readers keep serving the last persisted data.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ffa.config import SeasonConfig
from ffa.errors import FFAError, ValidationFailure
from ffa.feed.adapter import FeedAdapter
from ffa.feed.base import FeedUnavailable
from ffa.identity import ManagerId
from ffa.knockout.bracket import Bracket
from ffa.rating.engine import (
    FFA_RATING_V1,
    ManagerRatingInput,
    RatingFormula,
    SeasonPlacement,
    SeasonTrophies,
    combine_inputs,
    compute_field_stats,
    compute_rating,
    derive_rating_input,
)
from ffa.rating.history import DeltaSource
from ffa.repository import LeagueRepository
from ffa.scoring.live_points import ScoringRules, compute_live_points
from ffa.standings.groups import compute_goblet_standings, compute_group_standings
from ffa.standings.rank import MatchRecord, build_rank

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    period: int
    status: str  # "ok" | "provider_unavailable" | "rate_limited"
    provisional: bool = True
    stale: bool = False
    totals_saved: int = 0
    excluded: dict[str, str] = field(default_factory=dict)
    standings_saved: int = 0
    bracket_generated: bool = False
    legs_recorded: int = 0
    ratings_appended: int = 0
    retry_after: Optional[float] = None


@dataclass
class SeasonAwards:
    """Current-season titles and final placements known so far."""

    cup: Optional[ManagerId] = None
    league: Optional[ManagerId] = None
    goblet: Optional[ManagerId] = None
    placements: dict[ManagerId, SeasonPlacement] = field(default_factory=dict)

    def trophies_for(self, manager: ManagerId, season: str) -> list[SeasonTrophies]:
        won = SeasonTrophies(
            season=season,
            league=manager == self.league,
            cup=manager == self.cup,
            goblet=manager == self.goblet,
        )
        return [won] if won.count else []


class RefreshService:
    """Runs refreshes against one season's store."""

    def __init__(
        self,
        adapter: FeedAdapter,
        config: SeasonConfig,
        legacy_inputs: Optional[dict[ManagerId, ManagerRatingInput]] = None,
        formula: RatingFormula = FFA_RATING_V1,
    ):
        self.adapter = adapter
        self.config = config
        self.rules = ScoringRules.from_season(config)
        self.legacy_inputs = legacy_inputs or {}
        self.formula = formula

    async def refresh(self, repo: LeagueRepository, period: int) -> RefreshResult:
        """Run one refresh for a period and commit its writes."""
        from ffa.telemetry.metrics import record_refresh_run

        if period < 1:
            raise ValidationFailure(f"Period must be positive, got {period}")

        start_time = time.time()
        status = "error"
        try:
            result = await self._refresh(repo, period)
            await repo.commit()
            status = result.status
            return result
        finally:
            duration_ms = (time.time() - start_time) * 1000
            record_refresh_run(status, duration_ms)
            logger.info(f"[REFRESH] Period {period} finished: {status} in {duration_ms:.0f}ms")

    async def _refresh(self, repo: LeagueRepository, period: int) -> RefreshResult:
        fetched = await self.adapter.fetch_period(period)
        if isinstance(fetched, FeedUnavailable):
            logger.warning(
                f"[REFRESH] Period {period}: feed {fetched.reason}, keeping persisted data"
            )
            await repo.save_period(period, stale=True)
            return RefreshResult(
                period=period,
                status=fetched.reason,
                stale=True,
                retry_after=fetched.retry_after,
            )

        snapshot = fetched
        await repo.save_entries(self.adapter.entries)
        await repo.save_period(period, is_current=snapshot.is_current, finalized=snapshot.finalized)
        await repo.save_fixtures(snapshot.fixtures)

        previous = await repo.totals_for_period(period - 1) if period > 1 else {}
        live = compute_live_points(snapshot, self.rules, captain_history=previous)
        result = RefreshResult(
            period=period,
            status="ok",
            provisional=live.provisional,
            stale=snapshot.stale,
            totals_saved=await repo.save_period_totals(live),
            excluded=dict(live.excluded),
        )

        await self._refresh_cup(repo, period, result)

        if snapshot.finalized:
            result.ratings_appended = await self._refresh_ratings(repo, period)
        return result

    # =========================================================================
    # CUP
    # =========================================================================

    async def _refresh_cup(self, repo: LeagueRepository, period: int, result: RefreshResult) -> None:
        config = self.config
        if period < config.cup_start_period:
            return

        competition = config.cup_competition
        bracket = await repo.load_bracket(competition)

        if bracket is None:
            totals = await repo.get_period_totals(config.cup_start_period, config.group_stage_end_period)
            stage = compute_group_standings(
                totals,
                config.cup_start_period,
                config.group_stage_end_period,
                advance_pct=config.group_advance_pct,
                entrants=await repo.list_managers(),
            )
            result.standings_saved = await repo.save_standings(competition, stage)

            seeds = stage.seeds()
            if seeds is None:
                return
            try:
                bracket = Bracket.generate(competition, seeds, config.knockout_start_period)
            except FFAError as e:
                logger.error(f"[REFRESH] Cannot generate {competition} bracket: {e}")
                return
            result.bracket_generated = True

        last_knockout_period = max(m.leg_2_period for m in bracket.all_matchups())
        for knockout_period in range(config.knockout_start_period, min(period, last_knockout_period) + 1):
            totals = await repo.totals_for_period(knockout_period)
            result.legs_recorded += len(bracket.apply_period_totals(knockout_period, totals))

        await repo.save_bracket(bracket)

    # =========================================================================
    # RATINGS
    # =========================================================================

    async def _refresh_ratings(self, repo: LeagueRepository, period: int) -> int:
        config = self.config
        matches = await repo.list_match_records(through_period=period)
        totals = await repo.get_period_totals(end_period=period)
        bracket = await repo.load_bracket(config.cup_competition)
        awards = SeasonAwards(cup=bracket.champion if bracket is not None else None)
        if period >= config.final_period:
            awards = self._season_awards(matches, awards.cup)

        managers = sorted(set(await repo.list_managers()) | set(self.legacy_inputs))
        inputs = []
        for manager in managers:
            derived = derive_rating_input(
                manager,
                matches,
                totals,
                placements=[awards.placements[manager]] if manager in awards.placements else [],
                trophies=awards.trophies_for(manager, config.season),
            )
            inputs.append(combine_inputs(self.legacy_inputs.get(manager), derived, config))

        field_stats = compute_field_stats(inputs)
        log = await repo.load_rating_log()
        played_cup = self._cup_participants(bracket, period)
        played_league = {side for m in matches if m.period == period for side in (m.home, m.away)}
        season_ends = period == config.final_period

        appended = 0
        for manager_input in inputs:
            manager = manager_input.manager
            breakdown = compute_rating(manager_input, field_stats, self.formula)
            if manager in played_cup:
                source = DeltaSource.CUP
            elif season_ends and manager == awards.goblet:
                source = DeltaSource.GOBLET
            elif season_ends and manager in awards.placements:
                source = DeltaSource.LEAGUE
            elif manager in played_league:
                source = DeltaSource.HEAD_TO_HEAD
            else:
                source = DeltaSource.PERIODIC_RECOMPUTE
            entry = log.append_if_changed(breakdown, config.season, period, source)
            if entry is not None:
                await repo.append_rating(entry)
                appended += 1

        logger.info(f"[RATING] Period {period}: {appended} of {len(inputs)} ratings changed")
        return appended

    def _season_awards(self, matches: list[MatchRecord], cup: Optional[ManagerId]) -> SeasonAwards:
        """Final league table and goblet race once the last period is in."""
        final_period = self.config.final_period
        table = build_rank(matches, final_period)
        goblet = compute_goblet_standings(matches, final_period)
        placements = {
            manager: SeasonPlacement(season=self.config.season, rank=row.rank, field_size=len(table))
            for manager, row in table.items()
        }
        league = next((m for m, row in table.items() if row.rank == 1), None)
        awards = SeasonAwards(
            cup=cup,
            league=league,
            goblet=goblet[0].manager if goblet else None,
            placements=placements,
        )
        logger.info(
            f"[RATING] Season {self.config.season} decided: league {awards.league}, "
            f"goblet {awards.goblet}, cup {awards.cup}"
        )
        return awards

    @staticmethod
    def _cup_participants(bracket: Optional[Bracket], period: int) -> set[ManagerId]:
        if bracket is None:
            return set()
        return {
            team
            for m in bracket.all_matchups()
            if m.leg_for_period(period) is not None
            for team in (m.team_1, m.team_2)
            if team is not None
        }
