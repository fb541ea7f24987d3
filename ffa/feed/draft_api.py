"""Premier League Draft API provider implementation."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from ffa.config import Settings, get_settings
from ffa.errors import ProviderUnavailable, RateLimited
from ffa.feed.base import FeedProvider, LeagueEntry, LineupPick, PeriodStatus, PlayerPeriodScore

logger = logging.getLogger(__name__)

# Cap for a single backoff sleep, regardless of Retry-After
MAX_BACKOFF_SECONDS = 60.0


def _coerce_int(value, fallback: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return fallback


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class DraftAPIProvider(FeedProvider):
    """Draft API provider with bounded timeout, backoff retry and 429 handling."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        league_id: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.BASE_URL = (base_url or settings.FEED_BASE_URL).rstrip("/")
        self.league_id = league_id if league_id is not None else settings.FEED_LEAGUE_ID
        self.max_retries = max(1, max_retries if max_retries is not None else settings.FEED_MAX_RETRIES)
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.FEED_RETRY_BASE_SECONDS
        )
        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.FEED_TIMEOUT_SECONDS,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        # Cached until invalidate(); entries and fixtures share one payload
        self._league_details: Optional[dict] = None

    async def _request(self, endpoint: str, path: str) -> dict:
        """
        GET a provider path with retries.

        Timeouts, transport errors and 5xx responses are retried with
        exponential backoff. 429 honours Retry-After. Once retries are spent
        the call ends in an explicit terminal state: RateLimited if the last
        failure was throttling, ProviderUnavailable otherwise.

        Args:
            endpoint: Low-cardinality label for telemetry ("live", "picks", ...)
            path: Path relative to BASE_URL
        """
        from ffa.telemetry.metrics import record_feed_error, record_feed_request

        url = f"{self.BASE_URL}/{path.lstrip('/')}"
        last_error = ""
        retry_after: Optional[float] = None
        rate_limited = False

        for attempt in range(self.max_retries):
            start_time = time.time()
            delay = self.retry_base_seconds * (2**attempt)
            try:
                response = await self.client.get(url)
            except httpx.TimeoutException as e:
                record_feed_error(endpoint, "timeout")
                last_error = f"timeout: {e}"
                rate_limited = False
            except httpx.TransportError as e:
                record_feed_error(endpoint, "transport")
                last_error = f"transport: {e}"
                rate_limited = False
            else:
                latency_ms = (time.time() - start_time) * 1000
                record_feed_request(endpoint, response.status_code, latency_ms)

                if response.status_code == 429:
                    record_feed_error(endpoint, "rate_limit")
                    rate_limited = True
                    retry_after = _parse_retry_after(response)
                    last_error = "HTTP 429"
                    if retry_after is not None:
                        delay = retry_after
                elif response.status_code >= 500:
                    record_feed_error(endpoint, "http_5xx")
                    rate_limited = False
                    last_error = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    record_feed_error(endpoint, "http_4xx")
                    raise ProviderUnavailable(
                        f"{endpoint} request rejected: HTTP {response.status_code}",
                        endpoint=endpoint,
                    )
                else:
                    try:
                        data = response.json()
                    except ValueError as e:
                        record_feed_error(endpoint, "bad_payload")
                        raise ProviderUnavailable(
                            f"{endpoint} returned a non-JSON payload: {e}", endpoint=endpoint
                        ) from e
                    if not isinstance(data, dict):
                        record_feed_error(endpoint, "bad_payload")
                        raise ProviderUnavailable(
                            f"{endpoint} returned {type(data).__name__}, expected an object",
                            endpoint=endpoint,
                        )
                    return data

            if attempt < self.max_retries - 1:
                wait_time = min(delay, MAX_BACKOFF_SECONDS)
                logger.warning(
                    f"[FEED] {endpoint} failed ({last_error}), attempt {attempt + 1}/"
                    f"{self.max_retries}. Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)

        logger.error(f"[FEED] {endpoint} unavailable after {self.max_retries} attempts: {last_error}")
        if rate_limited:
            raise RateLimited(
                f"{endpoint} throttled by provider", retry_after=retry_after, endpoint=endpoint
            )
        raise ProviderUnavailable(f"{endpoint} unavailable: {last_error}", endpoint=endpoint)

    async def get_period_status(self) -> PeriodStatus:
        data = await self._request("bootstrap", "bootstrap-static")
        events = data.get("events") or {}
        current = _coerce_int(events.get("current"), 1) or 1
        finalized_through = 0
        for event in events.get("data") or []:
            event_id = _coerce_int(event.get("id"))
            if event.get("finished") and event.get("data_checked", True):
                finalized_through = max(finalized_through, event_id)
        return PeriodStatus(current=current, finalized_through=finalized_through)

    async def _get_league_details(self) -> dict:
        if self._league_details is None:
            self._league_details = await self._request(
                "league_details", f"league/{self.league_id}/details"
            )
        return self._league_details

    def invalidate(self) -> None:
        """Drop cached league details (fixture points change during a period)."""
        self._league_details = None

    async def get_league_entries(self) -> list[LeagueEntry]:
        details = await self._get_league_details()
        entries = []
        for raw in details.get("league_entries") or []:
            entry_id = _coerce_int(raw.get("entry_id"))
            league_entry_id = _coerce_int(raw.get("id"))
            if not entry_id or not league_entry_id:
                continue
            entries.append(
                LeagueEntry(
                    entry_id=entry_id,
                    league_entry_id=league_entry_id,
                    manager_name=str(raw.get("player_first_name") or raw.get("short_name") or ""),
                    entry_name=str(raw.get("entry_name") or ""),
                )
            )
        return entries

    async def get_fixtures(self, period: Optional[int] = None) -> list[dict]:
        details = await self._get_league_details()
        matches = details.get("matches") or []
        if period is None:
            return list(matches)
        return [m for m in matches if _coerce_int(m.get("event")) == period]

    async def get_live_scores(self, period: int) -> dict[int, PlayerPeriodScore]:
        data = await self._request("live", f"event/{period}/live")

        finished_fixtures = {
            _coerce_int(f.get("id"))
            for f in data.get("fixtures") or []
            if f.get("finished") or f.get("finished_provisional")
        }

        elements = data.get("elements") or {}
        if isinstance(elements, dict):
            items = [(key, value) for key, value in elements.items()]
        else:
            items = [(el.get("id") or el.get("element"), el) for el in elements]

        scores: dict[int, PlayerPeriodScore] = {}
        for key, value in items:
            player_id = _coerce_int(key)
            if player_id <= 0 or not isinstance(value, dict):
                continue
            stats = value.get("stats") or value
            fixture_ids = []
            for item in value.get("explain") or []:
                if isinstance(item, dict) and "fixture" in item:
                    fixture_ids.append(_coerce_int(item["fixture"]))
                elif isinstance(item, (list, tuple)) and len(item) == 2:
                    fixture_ids.append(_coerce_int(item[1]))
            finished = bool(fixture_ids) and all(fid in finished_fixtures for fid in fixture_ids)
            scores[player_id] = PlayerPeriodScore(
                player_id=player_id,
                period=period,
                points=_coerce_int(stats.get("total_points")),
                minutes=_coerce_int(stats.get("minutes")),
                bonus=_coerce_int(stats.get("bonus")),
                finished=finished,
            )
        return scores

    async def get_lineup(self, entry_id: int, period: int) -> list[LineupPick]:
        data = await self._request("picks", f"entry/{entry_id}/event/{period}")
        picks = []
        for raw in data.get("picks") or []:
            player_id = _coerce_int(raw.get("element"))
            slot = _coerce_int(raw.get("position"))
            if player_id <= 0 or slot <= 0:
                continue
            picks.append(
                LineupPick(
                    player_id=player_id,
                    slot=slot,
                    is_captain=bool(raw.get("is_captain")),
                    is_vice_captain=bool(raw.get("is_vice_captain")),
                )
            )
        return picks

    async def close(self) -> None:
        await self.client.aclose()
