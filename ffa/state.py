"""Shared singletons for the league engine.

Singleton-by-import pattern: main.py and routers import from this module
to share one feed adapter (and so one in-flight fetch per period).
"""

import logging
from typing import Optional

from ffa.config import SeasonConfig, get_settings
from ffa.feed.adapter import FeedAdapter
from ffa.feed.draft_api import DraftAPIProvider
from ffa.refresh import RefreshService

logger = logging.getLogger(__name__)

_feed_adapter: Optional[FeedAdapter] = None
_refresh_service: Optional[RefreshService] = None


def get_season_config() -> SeasonConfig:
    return SeasonConfig.from_settings(get_settings())


def get_feed_adapter() -> FeedAdapter:
    global _feed_adapter
    if _feed_adapter is None:
        settings = get_settings()
        _feed_adapter = FeedAdapter(
            DraftAPIProvider(settings=settings),
            get_season_config().build_resolver(),
            lineup_concurrency=settings.FEED_LINEUP_CONCURRENCY,
            cache_ttl=settings.FEED_CACHE_TTL_SECONDS,
            rate_limit_cooldown=settings.FEED_RATE_LIMIT_COOLDOWN_SECONDS,
        )
    return _feed_adapter


def get_refresh_service() -> RefreshService:
    global _refresh_service
    if _refresh_service is None:
        _refresh_service = RefreshService(get_feed_adapter(), get_season_config())
    return _refresh_service


async def close_feed() -> None:
    global _feed_adapter, _refresh_service
    if _feed_adapter is not None:
        await _feed_adapter.provider.close()
    _feed_adapter = None
    _refresh_service = None
