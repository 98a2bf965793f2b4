"""
Baseline Capture Module

Captures each entry's season total before its contest's gameweek goes live
(``score_before_period``), so that total_score = baseline + period_score.

Baselines are captured ONCE, before activation, and NEVER overwritten: an
entry that already has a baseline is skipped.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from database.supabase_client import SupabaseClient
from fpl_api.client import FPLAPIClient, FPLAPIError, FPLAPINotFoundError
from leagues.models import Contest, LeagueEntry

logger = logging.getLogger(__name__)


def baseline_from_history(history: Dict[str, Any], gameweek: int) -> int:
    """
    Season total going into a gameweek.

    Uses the latest ``current`` row strictly before the gameweek; 0 when
    there is none (gameweek 1, or a team created mid-season).
    """
    previous = [
        h for h in (history.get("current") or [])
        if isinstance(h.get("event"), int) and h["event"] < gameweek
    ]
    if not previous:
        return 0
    latest = max(previous, key=lambda h: h["event"])
    return int(latest.get("total_points") or 0)


class BaselineCapture:
    """Handles baseline capture for contest entries."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        db_client: SupabaseClient,
        config: Optional[Any] = None,
    ):
        self.fpl_client = fpl_client
        self.db_client = db_client
        self.config = config

    async def _entry_baseline(self, entry: LeagueEntry, gameweek: int) -> Optional[int]:
        try:
            history = await self.fpl_client.get_entry_history(entry.team_id)
        except FPLAPINotFoundError:
            return 0
        except FPLAPIError as e:
            logger.warning("Could not fetch entry history, baseline left empty", extra={
                "team_id": entry.team_id,
                "gameweek": gameweek,
                "error": str(e),
            })
            return None
        return baseline_from_history(history, gameweek)

    async def capture_contest_baselines(
        self,
        contest: Contest,
        entries: Optional[List[LeagueEntry]] = None
    ) -> int:
        """
        Fill missing baselines for a contest's entries.

        Args:
            contest: Contest about to be activated
            entries: Entries to consider (fetched if not given)

        Returns:
            Number of baselines written
        """
        if entries is None:
            entries = self.db_client.get_league_entries(contest.id)

        missing = [e for e in entries if e.score_before_period is None]
        if not missing:
            logger.debug("Baselines already captured, skipping", extra={
                "contest_id": contest.id,
                "gameweek": contest.gameweek,
            })
            return 0

        batch_size = getattr(self.config, "sync_batch_size", 5) or 5
        batch_sleep = getattr(self.config, "sync_batch_sleep_seconds", 0)

        updates = []
        for i in range(0, len(missing), batch_size):
            batch = missing[i:i + batch_size]
            baselines = await asyncio.gather(
                *(self._entry_baseline(entry, contest.gameweek) for entry in batch)
            )
            for entry, baseline in zip(batch, baselines):
                if baseline is not None:
                    entry.score_before_period = baseline
                    updates.append(entry.key(score_before_period=baseline))
            if i + batch_size < len(missing) and batch_sleep:
                await asyncio.sleep(batch_sleep)

        written = self.db_client.update_entry_baselines(updates) if updates else 0

        logger.info("Captured contest baselines", extra={
            "contest_id": contest.id,
            "gameweek": contest.gameweek,
            "missing": len(missing),
            "captured": written,
        })
        return written
