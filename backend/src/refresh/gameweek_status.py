"""
Gameweek status checks.

Decides whether a gameweek has started, whether every fixture is officially
finished, and whether FPL has confirmed bonus points for it. Only the
combination of the last two counts as "strictly complete", which is the gate
for irreversible contest settlement.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from fpl_api.client import FPLAPIClient, FPLAPIError
from leagues.models import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameweekStatus:
    """Derived status of one gameweek. Computed fresh on every check."""

    gameweek: int
    has_started: bool = False
    all_fixtures_finished: bool = False
    bonus_data_confirmed: bool = False
    error: Optional[str] = None

    @property
    def is_strictly_complete(self) -> bool:
        return self.all_fixtures_finished and self.bonus_data_confirmed

    def missing_conditions(self) -> List[str]:
        """Human-readable reasons the gameweek is not strictly complete."""
        if self.error:
            return [f"gameweek status unavailable: {self.error}"]
        missing = []
        if not self.all_fixtures_finished:
            missing.append("fixtures not finished")
        if not self.bonus_data_confirmed:
            missing.append("bonus data not confirmed")
        return missing

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gameweek": self.gameweek,
            "has_started": self.has_started,
            "all_fixtures_finished": self.all_fixtures_finished,
            "bonus_data_confirmed": self.bonus_data_confirmed,
            "is_strictly_complete": self.is_strictly_complete,
            "error": self.error,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _fixture_kickoffs(fixtures: List[Dict[str, Any]]) -> List[datetime]:
    kickoffs = []
    for fixture in fixtures:
        kickoff = parse_timestamp(fixture.get("kickoff_time"))
        if kickoff is not None:
            kickoffs.append(kickoff)
    return kickoffs


def find_confirmation(
    statuses: List[Dict[str, Any]],
    gameweek: int,
    match_date: Optional[str]
) -> Optional[Dict[str, Any]]:
    """
    Pick the event-status row that speaks for a gameweek.

    Prefer the row for (gameweek, date of the last fixture); otherwise the most
    recent row for the gameweek; None if the gameweek has no rows at all.
    """
    rows = [s for s in statuses if s.get("event") == gameweek]
    if not rows:
        return None
    if match_date:
        for row in rows:
            if row.get("date") == match_date:
                return row
    dated = [r for r in rows if r.get("date")]
    if dated:
        return max(dated, key=lambda r: str(r["date"]))
    return rows[-1]


class GameweekStatusChecker:
    """Evaluates gameweek start/finish/bonus status from the FPL API."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.fpl_client = fpl_client
        self.clock = clock

    async def check(self, gameweek: int) -> GameweekStatus:
        """
        Evaluate one gameweek.

        Never raises on upstream trouble: any FPL API failure yields an
        all-false status with ``error`` set, which callers must read as
        "not complete, try again later".
        """
        try:
            fixtures = await self.fpl_client.get_fixtures(gameweek)
            now = self.clock()
            kickoffs = _fixture_kickoffs(fixtures)

            has_started = any(kickoff <= now for kickoff in kickoffs)
            all_fixtures_finished = bool(fixtures) and all(
                f.get("finished") is True for f in fixtures
            )

            last_match_date = max(kickoffs).date().isoformat() if kickoffs else None
            statuses = await self.fpl_client.get_event_status()
            confirmation = find_confirmation(statuses, gameweek, last_match_date)
            bonus_data_confirmed = bool(confirmation and confirmation.get("bonus_added") is True)

            status = GameweekStatus(
                gameweek=gameweek,
                has_started=has_started,
                all_fixtures_finished=all_fixtures_finished,
                bonus_data_confirmed=bonus_data_confirmed,
            )
            logger.debug("Gameweek status checked", extra={
                **status.to_dict(),
                "fixtures_count": len(fixtures),
                "last_match_date": last_match_date,
                "confirmation_date": confirmation.get("date") if confirmation else None,
            })
            return status

        except (FPLAPIError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Gameweek status check failed, treating as not complete", extra={
                "gameweek": gameweek,
                "error": str(e),
                "error_type": type(e).__name__,
            })
            return GameweekStatus(gameweek=gameweek, error=str(e) or type(e).__name__)

    async def check_many(self, gameweeks: Iterable[int]) -> Dict[int, GameweekStatus]:
        """Evaluate each distinct gameweek once."""
        results: Dict[int, GameweekStatus] = {}
        for gameweek in sorted(set(gameweeks)):
            results[gameweek] = await self.check(gameweek)
        return results
