"""Application configuration using Pydantic Settings."""

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings

from ffa.identity import IdentityResolver, parse_aliases


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./ffa.db"

    # Live feed (Premier League Draft API)
    FEED_BASE_URL: str = "https://draft.premierleague.com/api"
    FEED_LEAGUE_ID: int = 0
    FEED_TIMEOUT_SECONDS: float = 10.0
    FEED_MAX_RETRIES: int = 3
    FEED_RETRY_BASE_SECONDS: float = 1.0
    FEED_RATE_LIMIT_COOLDOWN_SECONDS: float = 60.0
    FEED_LINEUP_CONCURRENCY: int = 5
    FEED_CACHE_TTL_SECONDS: float = 30.0

    # Season
    CURRENT_SEASON: str = "2025/26"
    HISTORICAL_STATS_CUTOFF_SEASON: str = "2025/26"
    CANONICAL_MANAGERS: str = "PATRICK,MATT,MARCO,LENNART,CHRIS,IAN,HENRI,DAVID,MAX,BENJI"
    MANAGER_ALIASES: str = "MATTHEW:MATT"
    SEASON_FINAL_PERIOD: int = 38  # league and goblet titles are decided here

    # Cup
    CUP_COMPETITION: str = "cup"
    CUP_START_PERIOD: int = 29
    GROUP_STAGE_PERIODS: int = 4
    GROUP_ADVANCE_PCT: float = 0.8

    # Scoring
    STARTER_SLOTS: int = 11
    CAPTAIN_MULTIPLIER: int = 2
    VICE_CAPTAIN_FALLBACK: bool = True
    CAPTAIN_CARRY_FORWARD: str = "single"  # "off" | "single" | "chain"
    APPLY_AUTOSUBS: bool = False
    BONUS_RELIABLE_AT_60: bool = True  # provisional bonus counts only after 60 minutes or full time

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class SeasonConfig:
    """Per-season configuration threaded into every computation entry point.

    Built from Settings once per invocation; tests construct it directly to
    exercise several season boundaries in one process.
    """

    season: str
    historical_cutoff_season: str
    canonical_managers: tuple[str, ...]
    manager_aliases: tuple[tuple[str, str], ...]
    final_period: int = 38
    cup_competition: str = "cup"
    cup_start_period: int = 29
    group_stage_periods: int = 4
    group_advance_pct: float = 0.8
    starter_slots: int = 11
    captain_multiplier: int = 2
    vice_captain_fallback: bool = True
    captain_carry_forward: str = "single"
    apply_autosubs: bool = False
    bonus_reliable_at_60: bool = True

    @property
    def group_stage_end_period(self) -> int:
        return self.cup_start_period + self.group_stage_periods - 1

    @property
    def knockout_start_period(self) -> int:
        return self.group_stage_end_period + 1

    @property
    def is_legacy_season(self) -> bool:
        """Seasons before the cutoff come from legacy imports, not live data."""
        return season_start_year(self.season) < season_start_year(self.historical_cutoff_season)

    def build_resolver(self) -> IdentityResolver:
        return IdentityResolver(
            canonical=self.canonical_managers or None,
            aliases=dict(self.manager_aliases),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SeasonConfig":
        canonical = tuple(
            m.strip().upper() for m in settings.CANONICAL_MANAGERS.split(",") if m.strip()
        )
        return cls(
            season=settings.CURRENT_SEASON,
            historical_cutoff_season=settings.HISTORICAL_STATS_CUTOFF_SEASON,
            canonical_managers=canonical,
            manager_aliases=tuple(sorted(parse_aliases(settings.MANAGER_ALIASES).items())),
            cup_competition=settings.CUP_COMPETITION,
            final_period=settings.SEASON_FINAL_PERIOD,
            cup_start_period=settings.CUP_START_PERIOD,
            group_stage_periods=settings.GROUP_STAGE_PERIODS,
            group_advance_pct=settings.GROUP_ADVANCE_PCT,
            starter_slots=settings.STARTER_SLOTS,
            captain_multiplier=settings.CAPTAIN_MULTIPLIER,
            vice_captain_fallback=settings.VICE_CAPTAIN_FALLBACK,
            captain_carry_forward=settings.CAPTAIN_CARRY_FORWARD,
            apply_autosubs=settings.APPLY_AUTOSUBS,
            bonus_reliable_at_60=settings.BONUS_RELIABLE_AT_60,
        )


def season_start_year(season: str) -> int:
    """Start year of a season label ("2025/26" -> 2025). Unparseable sorts first."""
    try:
        return int(str(season).split("/")[0])
    except (TypeError, ValueError):
        return 0
