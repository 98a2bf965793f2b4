"""
Entry score resolution.

Turns one (team, gameweek) into a single gameweek score. The FPL picks
endpoint's total is trusted whenever it is non-zero. Zero is ambiguous
("scored nothing" vs "not populated yet"), so only then do we recompute from
picks and the live element feed, and only a positive recomputation replaces it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from fpl_api.client import FPLAPIClient, FPLAPIError
from utils.points_calculator import PointsCalculator

logger = logging.getLogger(__name__)


class ResolutionState(Enum):
    """Per-entry resolution state."""
    FETCHING = "fetching"
    RETRYING = "retrying"
    RESOLVED = "resolved"
    DEGRADED = "degraded"


class ScoreSource(Enum):
    AUTHORITATIVE = "authoritative"
    LIVE_FALLBACK = "live_fallback"
    NOT_FOUND = "not_found"
    ZERO = "zero"
    DEGRADED = "degraded"


@dataclass
class SyncCache:
    """
    Upstream data shared by every entry in one sync run.

    Built once per run and dropped afterwards; the live points mapping is
    read-only so no resolution can alter what its siblings see.
    """

    gameweek: int
    live_points: Optional[Mapping[int, int]] = None

    @classmethod
    async def build(cls, fpl_client: FPLAPIClient, gameweek: int) -> "SyncCache":
        try:
            live = await fpl_client.get_live_unit_points(gameweek)
        except (FPLAPIError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Live points unavailable, zero-score fallback disabled for this run", extra={
                "gameweek": gameweek,
                "error": str(e),
            })
            return cls(gameweek=gameweek)
        return cls(gameweek=gameweek, live_points=MappingProxyType(dict(live)))

    @property
    def has_live_points(self) -> bool:
        return bool(self.live_points)


@dataclass
class EntryResolution:
    """Outcome of resolving one entry."""

    team_id: int
    points: int = 0
    state: ResolutionState = ResolutionState.FETCHING
    source: Optional[ScoreSource] = None
    attempts: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.state == ResolutionState.DEGRADED


class ScoreResolver:
    """Resolves entry gameweek scores with retry and zero-score fallback."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        points_calculator: Optional[PointsCalculator] = None
    ):
        self.fpl_client = fpl_client
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.points_calculator = points_calculator or PointsCalculator()

    async def _resolve_once(
        self,
        team_id: int,
        gameweek: int,
        cache: Optional[SyncCache]
    ) -> Tuple[int, ScoreSource]:
        score = await self.fpl_client.get_entry_gameweek_score(team_id, gameweek)
        if score.points != 0:
            return score.points, ScoreSource.AUTHORITATIVE

        if cache is None or not cache.has_live_points:
            return 0, ScoreSource.ZERO if score.found else ScoreSource.NOT_FOUND

        # picks come from the same payload as the score; empty means none were made
        picks = score.picks
        if not picks:
            return 0, ScoreSource.ZERO if score.found else ScoreSource.NOT_FOUND

        calculated = self.points_calculator.calculate_from_live(
            picks, cache.live_points, score.transfer_cost
        )
        if calculated["gameweek_points"] > 0:
            logger.info("Authoritative score is 0, using live recomputation", extra={
                "team_id": team_id,
                "gameweek": gameweek,
                "calculated_points": calculated["gameweek_points"],
            })
            return calculated["gameweek_points"], ScoreSource.LIVE_FALLBACK
        return 0, ScoreSource.ZERO

    async def resolve(
        self,
        team_id: int,
        gameweek: int,
        cache: Optional[SyncCache] = None
    ) -> EntryResolution:
        """
        Resolve one entry's gameweek score.

        FETCHING -> RESOLVED on success; FETCHING -> RETRYING on an upstream
        error while attempts remain; -> DEGRADED (score 0) once they run out.
        Never raises for upstream errors.
        """
        resolution = EntryResolution(team_id=team_id)

        while resolution.state in (ResolutionState.FETCHING, ResolutionState.RETRYING):
            resolution.attempts += 1
            try:
                points, source = await self._resolve_once(team_id, gameweek, cache)
            except FPLAPIError as e:
                resolution.errors.append(f"{type(e).__name__}: {e}")
                if resolution.attempts > self.max_retries:
                    resolution.state = ResolutionState.DEGRADED
                    resolution.points = 0
                    resolution.source = ScoreSource.DEGRADED
                    logger.warning("Entry score unresolved after retries, recording 0", extra={
                        "team_id": team_id,
                        "gameweek": gameweek,
                        "attempts": resolution.attempts,
                        "error": str(e),
                    })
                    break
                resolution.state = ResolutionState.RETRYING
                wait_time = self.retry_backoff * resolution.attempts
                logger.debug("Entry score fetch failed, retrying", extra={
                    "team_id": team_id,
                    "gameweek": gameweek,
                    "attempt": resolution.attempts,
                    "wait_time": wait_time,
                    "error": str(e),
                })
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                continue

            resolution.points = points
            resolution.source = source
            resolution.state = ResolutionState.RESOLVED

        return resolution

