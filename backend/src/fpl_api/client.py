"""
FPL API Client with rate limiting, retry logic, and error handling.

Handles all communication with the Fantasy Premier League API that the
league settlement engine needs: gameweek config, fixtures, the event-status
close confirmation, per-entry picks/score, live element points and entry
history.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config

logger = logging.getLogger(__name__)


class FPLAPIError(Exception):
    """Base exception for FPL API errors."""
    pass


class FPLAPIRateLimitError(FPLAPIError):
    """Raised when rate limit is exceeded."""
    pass


class FPLAPINonRetryableError(FPLAPIError):
    """Raised for non-retryable errors (4xx except 429)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FPLAPINotFoundError(FPLAPINonRetryableError):
    """Raised on 404. For entry endpoints this means 'no data', not a failure."""
    pass


class FPLAPIDataError(FPLAPIError):
    """Raised when a response body is empty, HTML, or not the expected shape."""
    pass


@dataclass
class EntryGameweekScore:
    """Authoritative gameweek score for one entry, as reported by the picks endpoint."""

    team_id: int
    gameweek: int
    points: int = 0  # net of transfer cost, may be negative
    transfer_cost: int = 0
    picks: List[Dict[str, Any]] = field(default_factory=list)
    found: bool = True


class FPLAPIClient:
    """Client for interacting with the FPL API."""

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.base_url = config.fpl_api_base_url
        self.max_retries = config.max_retries
        self.retry_backoff_base = config.retry_backoff_base
        self.max_retry_delay = config.max_retry_delay

        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        # Cache for bootstrap-static (gameweek config changes rarely)
        self._bootstrap_cache: Optional[Dict[str, Any]] = None
        self._bootstrap_cache_time: Optional[datetime] = None
        self._bootstrap_cache_ttl = timedelta(seconds=config.bootstrap_cache_ttl)

        self.headers = {
            "User-Agent": config.user_agent,
            "Accept": "application/json",
        }
        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            headers=self.headers,
            transport=transport,
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        # Also enforce minimum interval between requests
        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            # Add jitter (±25%)
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(max(0.0, wait_time + jitter))

        self.last_request_time = time.time()

    def _is_retryable_error(self, status_code: int) -> bool:
        """Check if error is retryable."""
        # Retryable: 429 (rate limit), 500, 502, 503, 504
        # Non-retryable: 400, 401, 403, 404
        return status_code in {429, 500, 502, 503, 504}

    def _backoff(self, attempt: int) -> float:
        """Capped exponential backoff with ±25% jitter."""
        backoff = min(
            self.retry_backoff_base * (2 ** attempt),
            self.max_retry_delay
        )
        jitter = backoff * 0.25 * (random.random() * 2 - 1)
        return max(0.0, backoff + jitter)

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        base = self.base_url.rstrip("/")
        return f"{base}/{endpoint.lstrip('/')}"

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for httpx request

        Returns:
            httpx.Response object

        Raises:
            FPLAPIRateLimitError: If rate limited after all retries
            FPLAPINotFoundError: On 404
            FPLAPINonRetryableError: On other non-retryable status codes
            FPLAPIError: For other errors after retries exhausted
        """
        url = self._build_url(endpoint)
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                await self._wait_for_rate_limit()
                response = await self.client.request(method, url, **kwargs)

                if response.is_success:
                    return response

                status_code = response.status_code

                if status_code == 429:
                    try:
                        retry_after = int(response.headers.get("Retry-After", 60))
                    except ValueError:
                        retry_after = 60
                    retry_after = min(retry_after, self.max_retry_delay)
                    logger.warning(
                        "Rate limited by FPL API",
                        extra={
                            "endpoint": endpoint,
                            "retry_after": retry_after,
                            "attempt": attempt + 1
                        }
                    )
                    if attempt < self.max_retries:
                        await asyncio.sleep(retry_after)
                        continue
                    raise FPLAPIRateLimitError(
                        f"Rate limited after {self.max_retries} retries"
                    )

                if status_code == 404:
                    raise FPLAPINotFoundError(
                        f"Not found: {endpoint}", status_code=status_code
                    )

                if not self._is_retryable_error(status_code):
                    error_text = response.text[:500]
                    logger.error(
                        "Non-retryable error from FPL API",
                        extra={
                            "endpoint": endpoint,
                            "status_code": status_code,
                            "error": error_text
                        }
                    )
                    raise FPLAPINonRetryableError(
                        f"Non-retryable error {status_code}: {error_text}",
                        status_code=status_code,
                    )

                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        "Retryable error from FPL API, retrying",
                        extra={
                            "endpoint": endpoint,
                            "status_code": status_code,
                            "attempt": attempt + 1,
                            "wait_time": wait_time
                        }
                    )
                    await asyncio.sleep(wait_time)
                    continue

                error_text = response.text[:500]
                raise FPLAPIError(
                    f"Request failed after {self.max_retries} retries: "
                    f"{status_code} - {error_text}"
                )

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exception = e
                kind = "Timeout" if isinstance(e, httpx.TimeoutException) else "Network error"
                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning(
                        f"{kind} from FPL API, retrying",
                        extra={
                            "endpoint": endpoint,
                            "attempt": attempt + 1,
                            "wait_time": wait_time,
                            "error": str(e)
                        }
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise FPLAPIError(f"{kind} after {self.max_retries} retries") from e

        raise FPLAPIError("Request failed") from last_exception

    async def _get_json(self, endpoint: str) -> Any:
        """GET an endpoint and decode its JSON body, rejecting empty or HTML responses."""
        response = await self._request_with_retry("GET", endpoint)

        if not response.content:
            logger.error("Empty response from FPL API", extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
            })
            raise FPLAPIDataError(f"Empty response from {endpoint}")

        # HTML instead of JSON usually means we are being blocked or redirected
        content_type = response.headers.get("content-type", "").lower()
        if "text/html" in content_type:
            logger.error("API returned HTML (blocking?)", extra={
                "url": str(response.url),
                "status_code": response.status_code,
                "content_type": content_type
            })
            raise FPLAPIDataError(f"FPL API returned HTML instead of JSON for {endpoint}")

        try:
            return response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "content_length": len(response.content),
                "response_preview": response.text[:500],
                "error": str(e),
            })
            raise FPLAPIDataError(f"Failed to parse JSON from {endpoint}: {e}") from e

    async def get_bootstrap_static(self, use_cache: bool = True) -> Dict[str, Any]:
        """
        Get bootstrap-static data (gameweeks with start/finish flags, teams, players).

        Args:
            use_cache: Whether to use cached data if available

        Returns:
            Bootstrap static data dictionary
        """
        if use_cache and self._bootstrap_cache is not None and self._bootstrap_cache_time is not None:
            age = datetime.now(timezone.utc) - self._bootstrap_cache_time
            if age < self._bootstrap_cache_ttl:
                logger.debug("Using cached bootstrap-static data", extra={
                    "cache_age_seconds": age.total_seconds()
                })
                return self._bootstrap_cache

        data = await self._get_json("/bootstrap-static/")
        if not isinstance(data, dict):
            raise FPLAPIDataError("bootstrap-static is not an object")

        self._bootstrap_cache = data
        self._bootstrap_cache_time = datetime.now(timezone.utc)

        logger.info("Bootstrap-static fetched", extra={
            "gameweeks_count": len(data.get("events") or []),
        })

        return data

    async def get_gameweeks(self) -> List[Dict[str, Any]]:
        """Gameweek (event) list from bootstrap-static."""
        data = await self.get_bootstrap_static()
        return data.get("events") or []

    async def get_fixtures(self, gameweek: int) -> List[Dict[str, Any]]:
        """
        Get fixtures for a gameweek.

        Args:
            gameweek: Gameweek number

        Returns:
            List of fixture dictionaries (kickoff_time, finished, ...)
        """
        fixtures = await self._get_json(f"/fixtures/?event={gameweek}")
        if not isinstance(fixtures, list):
            raise FPLAPIDataError(f"Fixtures for gameweek {gameweek} is not a list")

        logger.debug("Fetched fixtures", extra={
            "gameweek": gameweek,
            "fixtures_count": len(fixtures)
        })

        return fixtures

    async def get_event_status(self) -> List[Dict[str, Any]]:
        """
        Get the event-status feed: one row per (date, event) saying whether
        bonus points have been added for that match day.

        Returns:
            List of status dictionaries ({date, event, bonus_added, points})
        """
        data = await self._get_json("/event-status/")
        if not isinstance(data, dict):
            raise FPLAPIDataError("event-status is not an object")
        status = data.get("status")
        if status is None:
            return []
        if not isinstance(status, list):
            raise FPLAPIDataError("event-status.status is not a list")
        return status

    async def get_event_live(self, gameweek: int) -> Dict[str, Any]:
        """
        Get live event data for a gameweek.

        Args:
            gameweek: Gameweek number

        Returns:
            Live event data dictionary
        """
        data = await self._get_json(f"/event/{gameweek}/live/")
        if not isinstance(data, dict):
            raise FPLAPIDataError(f"Live data for gameweek {gameweek} is not an object")

        logger.debug("Fetched live event data", extra={
            "gameweek": gameweek,
            "players_count": len(data["elements"]) if isinstance(data.get("elements"), list) else 0
        })

        return data

    async def get_live_unit_points(self, gameweek: int) -> Dict[int, int]:
        """
        Live total points per element for a gameweek.

        Returns:
            Dict mapping element id -> live total_points
        """
        data = await self.get_event_live(gameweek)
        points: Dict[int, int] = {}
        elements = data.get("elements") or []
        if not isinstance(elements, list):
            raise FPLAPIDataError(f"Live elements for gameweek {gameweek} are not a list")
        for element in elements:
            if not isinstance(element, dict) or element.get("id") is None:
                logger.debug("Skipping malformed live element", extra={"gameweek": gameweek})
                continue
            element_id = element["id"]
            stats = element.get("stats")
            if not isinstance(stats, dict):
                stats = {}
            try:
                points[int(element_id)] = int(stats.get("total_points") or 0)
            except (TypeError, ValueError):
                logger.debug("Skipping malformed live element", extra={
                    "gameweek": gameweek,
                    "element": element_id,
                })
        return points

    async def get_entry_history(self, team_id: int) -> Dict[str, Any]:
        """
        Get entry (manager) history data.

        Args:
            team_id: FPL entry ID

        Returns:
            History data dictionary ({"current": [...], "past": [...], "chips": [...]})
        """
        data = await self._get_json(f"/entry/{team_id}/history/")
        if not isinstance(data, dict):
            raise FPLAPIDataError(f"History for entry {team_id} is not an object")
        return data

    async def _get_entry_picks_payload(self, team_id: int, gameweek: int) -> Dict[str, Any]:
        data = await self._get_json(f"/entry/{team_id}/event/{gameweek}/picks/")
        if not isinstance(data, dict):
            raise FPLAPIDataError(
                f"Picks for entry {team_id} gameweek {gameweek} is not an object"
            )
        return data

    async def get_entry_picks(
        self,
        team_id: int,
        gameweek: int
    ) -> List[Dict[str, Any]]:
        """
        Get an entry's picks for a gameweek.

        Args:
            team_id: FPL entry ID
            gameweek: Gameweek number

        Returns:
            List of picks ({element, multiplier, position, ...}); empty on 404
        """
        try:
            data = await self._get_entry_picks_payload(team_id, gameweek)
        except FPLAPINotFoundError:
            return []
        picks = data.get("picks") or []
        if not isinstance(picks, list):
            raise FPLAPIDataError(f"Picks for entry {team_id} is not a list")
        return picks

    async def get_entry_gameweek_score(
        self,
        team_id: int,
        gameweek: int
    ) -> EntryGameweekScore:
        """
        Get the authoritative gameweek score for an entry.

        Points are taken from ``entry_history.points`` net of
        ``event_transfers_cost``. A 404 means the entry has no data for this
        gameweek and is returned as a zero score with ``found=False``.

        Args:
            team_id: FPL entry ID
            gameweek: Gameweek number

        Returns:
            EntryGameweekScore
        """
        try:
            data = await self._get_entry_picks_payload(team_id, gameweek)
        except FPLAPINotFoundError:
            logger.debug("Entry has no picks for gameweek", extra={
                "team_id": team_id,
                "gameweek": gameweek,
            })
            return EntryGameweekScore(team_id=team_id, gameweek=gameweek, found=False)

        history = data.get("entry_history") or {}
        if not isinstance(history, dict):
            raise FPLAPIDataError(f"Malformed entry_history for entry {team_id} gameweek {gameweek}")
        try:
            gross = int(history.get("points") or 0)
            transfer_cost = int(history.get("event_transfers_cost") or 0)
        except (TypeError, ValueError) as e:
            raise FPLAPIDataError(
                f"Malformed entry_history for entry {team_id} gameweek {gameweek}"
            ) from e

        picks = data.get("picks") or []
        if not isinstance(picks, list):
            picks = []

        return EntryGameweekScore(
            team_id=team_id,
            gameweek=gameweek,
            points=gross - transfer_cost,
            transfer_cost=transfer_cost,
            picks=picks,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
