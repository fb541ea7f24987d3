"""
Feed adapter: normalized per-period data with request coalescing.

Given a period, returns the fixtures scheduled for it, each entry's lineup
and the live score of every player, all keyed by ManagerId. Concurrent
identical requests share one in-flight fetch. Provider failures come back
as FeedUnavailable (with the last-known-good snapshot flagged stale), never
as zeros.
"""

import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from ffa.errors import IdentifierMismatch, ProviderUnavailable, RateLimited, ValidationFailure
from ffa.feed.base import (
    FeedProvider,
    FeedSnapshot,
    FeedUnavailable,
    Fixture,
    LeagueEntry,
    LineupSelection,
)
from ffa.identity import ENTRY, LEAGUE_ENTRY, IdentityResolver, ManagerId
from ffa.utils.cache import KeyedCache

logger = logging.getLogger(__name__)

FeedResult = Union[FeedSnapshot, FeedUnavailable]


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class FeedAdapter:
    """Coalescing, concurrency-bounded front for a FeedProvider."""

    def __init__(
        self,
        provider: FeedProvider,
        resolver: IdentityResolver,
        lineup_concurrency: int = 5,
        cache_ttl: float = 0.0,
        rate_limit_cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.resolver = resolver
        self.lineup_concurrency = max(1, lineup_concurrency)
        self.rate_limit_cooldown = rate_limit_cooldown
        self._clock = clock
        self._inflight: dict[int, asyncio.Task] = {}
        self._last_good = KeyedCache(ttl=cache_ttl, clock=clock)
        self._cooldown_until = 0.0
        self._entries: dict[ManagerId, LeagueEntry] = {}

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    def last_good(self, period: int) -> Optional[FeedSnapshot]:
        return self._last_good.get_any(period)

    def entry_for(self, manager: ManagerId) -> Optional[LeagueEntry]:
        return self._entries.get(manager)

    @property
    def entries(self) -> dict[ManagerId, LeagueEntry]:
        return dict(self._entries)

    async def fetch_period(self, period: int) -> FeedResult:
        """
        Fetch normalized data for a period.

        Callers arriving while a fetch for the same period is running await
        that fetch instead of starting another one.
        """
        hit, cached = self._last_good.get(period)
        if hit:
            return cached

        task = self._inflight.get(period)
        if task is not None:
            from ffa.telemetry.metrics import record_coalesced_fetch
            record_coalesced_fetch()
            logger.debug(f"[FEED] Joining in-flight fetch for period {period}")
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._fetch(period))
        self._inflight[period] = task

        def _clear(done: asyncio.Task, key: int = period) -> None:
            if self._inflight.get(key) is done:
                self._inflight.pop(key, None)

        task.add_done_callback(_clear)
        return await asyncio.shield(task)

    def _unavailable(self, period: int, reason: str, detail: str, retry_after: Optional[float] = None) -> FeedUnavailable:
        from ffa.telemetry.metrics import record_stale_served

        last = self._last_good.get_any(period)
        if last is not None:
            last = dataclasses.replace(last, stale=True)
            record_stale_served(reason)
            logger.warning(
                f"[FEED] Period {period} {reason}: serving last-known-good data "
                f"({self._last_good.age(period):.0f}s old)"
            )
        else:
            logger.warning(f"[FEED] Period {period} {reason} and no last-known-good data: {detail}")
        return FeedUnavailable(
            period=period,
            reason=reason,
            detail=detail,
            retry_after=retry_after,
            last_good=last,
        )

    async def _fetch(self, period: int) -> FeedResult:
        if self.in_cooldown:
            remaining = self._cooldown_until - self._clock()
            return self._unavailable(period, "rate_limited", "cooling down", retry_after=remaining)

        self.provider.invalidate()
        try:
            status = await self.provider.get_period_status()
            entries = await self.provider.get_league_entries()
            raw_fixtures = await self.provider.get_fixtures(period)
            scores = await self.provider.get_live_scores(period)
        except RateLimited as e:
            cooldown = e.retry_after if e.retry_after is not None else self.rate_limit_cooldown
            self._cooldown_until = self._clock() + cooldown
            logger.warning(f"[FEED] Rate limited, pausing fetches for {cooldown:.0f}s")
            return self._unavailable(period, "rate_limited", str(e), retry_after=cooldown)
        except ProviderUnavailable as e:
            return self._unavailable(period, "provider_unavailable", str(e))

        self._register_entries(entries)
        fixtures = self._resolve_fixtures(raw_fixtures, period)

        scheduled = sorted({m for f in fixtures for m in (f.home, f.away)})
        if not scheduled:
            scheduled = sorted(self._entries)

        errors: dict[str, str] = {}
        lineups = await self._fetch_lineups(scheduled, period, errors)

        if scheduled and not lineups:
            return self._unavailable(period, "provider_unavailable", "every lineup fetch failed")

        snapshot = FeedSnapshot(
            period=period,
            fixtures=fixtures,
            lineups=lineups,
            scores=scores,
            fetched_at=datetime.now(timezone.utc),
            is_current=status.current == period,
            finalized=status.is_finalized(period),
            errors=errors,
        )
        self._last_good.set(period, snapshot)
        logger.info(
            f"[FEED] Period {period}: {len(fixtures)} fixtures, {len(lineups)} lineups, "
            f"{len(scores)} player scores, {len(errors)} errors"
        )
        return snapshot

    def _register_entries(self, entries: list[LeagueEntry]) -> None:
        for entry in entries:
            try:
                manager = self.resolver.register(ENTRY, entry.entry_id, entry.manager_name)
                self.resolver.register(LEAGUE_ENTRY, entry.league_entry_id, entry.manager_name)
            except IdentifierMismatch as e:
                logger.warning(f"[FEED] Skipping league entry {entry.entry_id}: {e}")
                continue
            self._entries[manager] = entry

    def _resolve_fixtures(self, raw_fixtures: list[dict], period: int) -> list[Fixture]:
        fixtures = []
        for raw in raw_fixtures:
            # Fixture records use the league-entry namespace, never entry ids
            home = self.resolver.try_resolve(LEAGUE_ENTRY, raw.get("league_entry_1"))
            away = self.resolver.try_resolve(LEAGUE_ENTRY, raw.get("league_entry_2"))
            if home is None or away is None:
                continue
            fixtures.append(
                Fixture(
                    period=period,
                    home=home,
                    away=away,
                    home_points=_optional_int(raw.get("league_entry_1_points")),
                    away_points=_optional_int(raw.get("league_entry_2_points")),
                    finished=bool(raw.get("finished")),
                )
            )
        return fixtures

    async def _fetch_lineups(
        self,
        managers: list[ManagerId],
        period: int,
        errors: dict[str, str],
    ) -> dict[ManagerId, LineupSelection]:
        semaphore = asyncio.Semaphore(self.lineup_concurrency)

        async def fetch_one(manager: ManagerId) -> Optional[LineupSelection]:
            entry = self._entries.get(manager)
            if entry is None:
                errors[manager] = "no entry registered for manager"
                return None
            async with semaphore:
                try:
                    picks = await self.provider.get_lineup(entry.entry_id, period)
                    return LineupSelection(manager=manager, period=period, picks=picks).validate()
                except (ProviderUnavailable, ValidationFailure) as e:
                    logger.warning(f"[FEED] Lineup for {manager} period {period} excluded: {e}")
                    errors[manager] = str(e)
                    return None
                except Exception as e:
                    logger.error(
                        f"[FEED] Unexpected error reading lineup for {manager} period {period}: {e}",
                        exc_info=True,
                    )
                    errors[manager] = f"unexpected error: {type(e).__name__}: {e}"
                    return None

        results = await asyncio.gather(*(fetch_one(m) for m in managers))
        return {lineup.manager: lineup for lineup in results if lineup is not None}
