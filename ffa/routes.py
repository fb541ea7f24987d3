"""League routes: fixtures, group stage, bracket, goblet, ratings, refresh.

Reads come from the persisted store and are side-effect free. The current
period's persisted totals (written by the last refresh) stand in for
recorded fixture points, so every view agrees with one scoring run.
Only POST /refresh writes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ffa.config import SeasonConfig
from ffa.database import get_async_session, get_pool_status
from ffa.errors import IdentifierMismatch, ValidationFailure
from ffa.identity import ManagerId
from ffa.refresh import RefreshService
from ffa.repository import LeagueRepository
from ffa.standings.groups import compute_goblet_standings
from ffa.standings.rank import build_rank
from ffa.state import get_refresh_service, get_season_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["league"])


class HealthResponse(BaseModel):
    status: str
    season: str
    db_pool: dict


def get_repository(
    session: AsyncSession = Depends(get_async_session),
    config: SeasonConfig = Depends(get_season_config),
) -> LeagueRepository:
    return LeagueRepository(session, config.season)


@router.get("/health", response_model=HealthResponse)
async def health_check(config: SeasonConfig = Depends(get_season_config)):
    """Health check endpoint."""
    return HealthResponse(status="ok", season=config.season, db_pool=get_pool_status())


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics (feed, identity resolution, refresh runs)."""
    from ffa.telemetry.metrics import get_metrics_text

    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)


# =============================================================================
# FIXTURES
# =============================================================================


@router.get("/fixtures/{period}")
async def get_fixtures(period: int, repo: LeagueRepository = Depends(get_repository)):
    """
    Fixtures for a period with points and league ranks.

    Current period: live totals from the last refresh substitute recorded
    points, and ranks include them. Past periods: stored points only.
    """
    if period < 1:
        raise HTTPException(status_code=422, detail=f"Period must be positive, got {period}")

    flags = await repo.get_period(period)
    current_period = await repo.current_period()
    is_current = current_period == period
    matches = await repo.list_match_records(through_period=period)
    fixtures = [m for m in matches if m.period == period]

    overrides: dict[ManagerId, int] = {}
    provisional = not (flags.finalized if flags else False)
    if is_current:
        participants = {side for m in fixtures for side in (m.home, m.away)}
        totals = await repo.totals_for_period(period)
        overrides = {
            manager: total.total for manager, total in totals.items() if manager in participants
        }

    ranks = build_rank(matches, period, overrides, current_period=current_period)

    def side_points(manager: ManagerId, recorded: Optional[int]) -> Optional[int]:
        return overrides.get(manager, recorded)

    return {
        "period": period,
        "is_current": is_current,
        "finalized": bool(flags and flags.finalized),
        "provisional": provisional,
        "stale": bool(flags and flags.stale),
        "refreshed_at": flags.refreshed_at.isoformat() if flags and flags.refreshed_at else None,
        "fixtures": [
            {
                "home": m.home,
                "away": m.away,
                "home_points": side_points(m.home, m.home_points),
                "away_points": side_points(m.away, m.away_points),
                "home_rank": ranks[m.home].rank,
                "away_rank": ranks[m.away].rank,
                "live": is_current and (m.home in overrides or m.away in overrides),
            }
            for m in fixtures
        ],
        "table": [
            {
                "manager": row.manager,
                "rank": row.rank,
                "points": row.points,
                "points_for": row.points_for,
                "played": row.played,
                "wins": row.wins,
                "draws": row.draws,
                "losses": row.losses,
            }
            for row in sorted(ranks.values(), key=lambda r: r.rank)
        ],
    }


# =============================================================================
# CUP
# =============================================================================


def _check_competition(competition: str, config: SeasonConfig) -> None:
    if competition != config.cup_competition:
        raise HTTPException(status_code=404, detail=f"Unknown competition: {competition}")


@router.get("/competitions/{competition}/group")
async def get_group_standings(
    competition: str,
    repo: LeagueRepository = Depends(get_repository),
    config: SeasonConfig = Depends(get_season_config),
):
    """Group stage standings with advancement flags."""
    _check_competition(competition, config)
    rows, complete = await repo.get_standings(competition)
    return {
        "competition": competition,
        "start_period": config.cup_start_period,
        "end_period": config.group_stage_end_period,
        "complete": complete,
        "provisional": not complete,
        "standings": [
            {
                "manager": row.manager,
                "rank": row.rank,
                "points": row.points,
                "captain_points": row.tiebreak,
                "periods_played": row.periods_played,
                "advancing": row.advancing,
            }
            for row in rows
        ],
    }


@router.get("/competitions/{competition}/bracket")
async def get_bracket(
    competition: str,
    repo: LeagueRepository = Depends(get_repository),
    config: SeasonConfig = Depends(get_season_config),
):
    """Bracket tree with resolved winners and tie-break annotations."""
    _check_competition(competition, config)
    bracket = await repo.load_bracket(competition)
    if bracket is None:
        return {"competition": competition, "generated": False, "complete": False, "rounds": []}

    return {
        "competition": competition,
        "generated": True,
        "complete": bracket.complete,
        "champion": bracket.champion,
        "rounds": [
            {
                "round": round_number,
                "matchups": [
                    {
                        "matchup_number": m.matchup_number,
                        "status": m.status,
                        "leg_1_period": m.leg_1_period,
                        "leg_2_period": m.leg_2_period,
                        "team_1": m.team_1,
                        "team_2": m.team_2,
                        "team_1_seed": m.team_1_seed,
                        "team_2_seed": m.team_2_seed,
                        "team_1_leg_1_points": m.team_1_leg_1_points,
                        "team_2_leg_1_points": m.team_2_leg_1_points,
                        "team_1_leg_2_points": m.team_1_leg_2_points,
                        "team_2_leg_2_points": m.team_2_leg_2_points,
                        "winner": m.winner,
                        "tie_break_method": m.tie_break_method,
                    }
                    for m in bracket.rounds[round_number]
                ],
            }
            for round_number in sorted(bracket.rounds)
        ],
    }


# =============================================================================
# GOBLET
# =============================================================================


@router.get("/goblet")
async def get_goblet(repo: LeagueRepository = Depends(get_repository)):
    """Points-for race over league fixtures up to the latest finalized period."""
    through = await repo.latest_finalized_period()
    if through is None:
        return {"through_period": None, "standings": []}
    rows = compute_goblet_standings(await repo.list_match_records(through_period=through), through)
    return {
        "through_period": through,
        "standings": [
            {"manager": r.manager, "rank": r.rank, "points_for": r.points_for, "rounds": r.rounds}
            for r in rows
        ],
    }


# =============================================================================
# RATINGS
# =============================================================================


def _rating_row(entry) -> dict:
    breakdown = entry.breakdown
    return {
        "manager": entry.manager,
        "version": entry.version,
        "season": entry.season,
        "period": entry.period,
        "rating": entry.rating,
        "delta": entry.delta,
        "source": entry.source.value,
        "placement": breakdown.placement if breakdown else None,
        "silverware": breakdown.silverware if breakdown else None,
        "efficiency": breakdown.efficiency if breakdown else None,
        "modifier": breakdown.modifier if breakdown else None,
        "seasons": breakdown.seasons if breakdown else None,
        "recorded_at": entry.recorded_at.isoformat() if entry.recorded_at else None,
    }


@router.get("/ratings")
async def get_ratings(repo: LeagueRepository = Depends(get_repository)):
    """Current rating per manager (latest row of the append-only log)."""
    log = await repo.load_rating_log()
    latest = sorted(log.latest().values(), key=lambda e: (-e.rating, str(e.manager)))
    return {"ratings": [_rating_row(e) for e in latest]}


@router.get("/ratings/{manager}/history")
async def get_rating_history(
    manager: str,
    repo: LeagueRepository = Depends(get_repository),
    config: SeasonConfig = Depends(get_season_config),
):
    """Every rating row for a manager with delta attribution."""
    try:
        manager_id = config.build_resolver().canonical_name(manager)
    except IdentifierMismatch as e:
        raise HTTPException(status_code=404, detail=str(e))

    log = await repo.load_rating_log()
    history = log.history(manager_id)
    if not history:
        raise HTTPException(status_code=404, detail=f"No rating history for {manager_id}")
    return {"manager": manager_id, "history": [_rating_row(e) for e in history]}


# =============================================================================
# REFRESH (the only writer)
# =============================================================================


@router.post("/refresh/{period}")
async def trigger_refresh(
    period: int,
    repo: LeagueRepository = Depends(get_repository),
    service: RefreshService = Depends(get_refresh_service),
):
    """Fetch, score and persist one period. Timer or request driven."""
    try:
        result = await service.refresh(repo, period)
    except ValidationFailure as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "period": result.period,
        "status": result.status,
        "provisional": result.provisional,
        "stale": result.stale,
        "totals_saved": result.totals_saved,
        "excluded": result.excluded,
        "standings_saved": result.standings_saved,
        "bracket_generated": result.bracket_generated,
        "legs_recorded": result.legs_recorded,
        "ratings_appended": result.ratings_appended,
        "retry_after": result.retry_after,
    }
