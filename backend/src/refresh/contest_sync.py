"""
Contest score synchronization.

One sync pass for one contest: resolve every entry's gameweek score in small
paced groups, write all scores in one bulk statement, recompute ranks, then
raise the contest's best-score watermark if it improved.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import Config
from database.supabase_client import SupabaseClient
from fpl_api.client import FPLAPIClient
from leagues.models import Contest, LeagueEntry
from refresh.gameweek_status import GameweekStatus, GameweekStatusChecker
from refresh.ranks import LeagueRankCalculator
from refresh.score_resolver import EntryResolution, ScoreResolver, SyncCache

logger = logging.getLogger(__name__)

SKIPPED_NOT_STARTED = "gameweek_not_started"
SKIPPED_STATUS_UNAVAILABLE = "status_unavailable"


@dataclass
class ContestSyncResult:
    """Counts and failures from one contest sync pass."""

    contest_id: str
    gameweek: int
    entries_updated: int = 0
    ranks_updated: int = 0
    failed_entries: List[int] = field(default_factory=list)
    best_score: Optional[int] = None
    best_score_updated: bool = False
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contest_id": self.contest_id,
            "gameweek": self.gameweek,
            "entries_updated": self.entries_updated,
            "ranks_updated": self.ranks_updated,
            "failed_entries": list(self.failed_entries),
            "best_score": self.best_score,
            "best_score_updated": self.best_score_updated,
            "skipped_reason": self.skipped_reason,
        }


class ContestSynchronizer:
    """Synchronizes live gameweek scores into a contest's entries."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        db_client: SupabaseClient,
        config: Config,
        status_checker: Optional[GameweekStatusChecker] = None,
        score_resolver: Optional[ScoreResolver] = None,
        rank_calculator: Optional[LeagueRankCalculator] = None
    ):
        self.fpl_client = fpl_client
        self.db_client = db_client
        self.config = config
        self.status_checker = status_checker or GameweekStatusChecker(fpl_client)
        self.score_resolver = score_resolver or ScoreResolver(
            fpl_client,
            max_retries=config.entry_max_retries,
            retry_backoff=config.entry_retry_backoff,
        )
        self.rank_calculator = rank_calculator or LeagueRankCalculator(db_client)

    def _zero_scores(self, contest: Contest, entries: List[LeagueEntry]) -> int:
        updates = []
        for entry in entries:
            entry.period_score = 0
            entry.total_score = entry.total_for(0)
            updates.append(entry.key(period_score=0, total_score=entry.total_score))
        written = self.db_client.update_entry_scores(updates) if updates else 0
        logger.debug("Gameweek not started, period scores reset to 0", extra={
            "contest_id": contest.id,
            "gameweek": contest.gameweek,
            "entries": written,
        })
        return written

    async def _resolve_entries(
        self,
        entries: List[LeagueEntry],
        gameweek: int,
        cache: SyncCache
    ) -> Dict[int, EntryResolution]:
        """Resolve entries in paced groups of sync_batch_size."""
        batch_size = self.config.sync_batch_size
        resolutions: Dict[int, EntryResolution] = {}

        for i in range(0, len(entries), batch_size):
            batch = entries[i:i + batch_size]
            results = await asyncio.gather(
                *(self.score_resolver.resolve(e.team_id, gameweek, cache) for e in batch),
                return_exceptions=True
            )
            for entry, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error("Unexpected error resolving entry score", extra={
                        "team_id": entry.team_id,
                        "gameweek": gameweek,
                        "error": str(result),
                    }, exc_info=result)
                    continue
                resolutions[entry.team_id] = result

            if i + batch_size < len(entries) and self.config.sync_batch_sleep_seconds > 0:
                await asyncio.sleep(self.config.sync_batch_sleep_seconds)

        return resolutions

    def _update_best_score(self, contest: Contest, best_score: int) -> bool:
        stored = contest.best_score_so_far
        if stored is not None and best_score <= stored:
            return False
        updated = self.db_client.update_contest_best_score(contest.id, best_score)
        if updated:
            contest.best_score_so_far = best_score
            logger.info("Contest best score improved", extra={
                "contest_id": contest.id,
                "previous_best": stored,
                "best_score": best_score,
            })
        return updated

    async def sync_contest(
        self,
        contest: Contest,
        entries: Optional[List[LeagueEntry]] = None,
        status: Optional[GameweekStatus] = None
    ) -> ContestSyncResult:
        """
        Run one sync pass for a contest.

        Args:
            contest: Contest to sync
            entries: Entry snapshot to use (fetched once here if not given)
            status: Already-evaluated gameweek status (checked here if not given)

        Returns:
            ContestSyncResult
        """
        result = ContestSyncResult(contest_id=contest.id, gameweek=contest.gameweek)

        if status is None:
            status = await self.status_checker.check(contest.gameweek)
        if entries is None:
            entries = self.db_client.get_league_entries(contest.id)

        if status.error:
            # Unknown is not "not started"; keep whatever scores are stored
            result.skipped_reason = SKIPPED_STATUS_UNAVAILABLE
            logger.warning("Gameweek status unavailable, contest sync skipped", extra={
                "contest_id": contest.id,
                "gameweek": contest.gameweek,
                "error": status.error,
            })
            return result

        if not status.has_started:
            result.entries_updated = self._zero_scores(contest, entries)
            result.skipped_reason = SKIPPED_NOT_STARTED
            return result

        if not entries:
            logger.debug("Contest has no entries", extra={"contest_id": contest.id})
            return result

        cache = await SyncCache.build(self.fpl_client, contest.gameweek)
        resolutions = await self._resolve_entries(entries, contest.gameweek, cache)

        updates = []
        for entry in entries:
            resolution = resolutions.get(entry.team_id)
            if resolution is None or resolution.degraded:
                result.failed_entries.append(entry.team_id)
            points = resolution.points if resolution is not None else 0
            entry.period_score = points
            entry.total_score = entry.total_for(points)
            updates.append(entry.key(period_score=points, total_score=entry.total_score))

        result.entries_updated = self.db_client.update_entry_scores(updates)
        result.ranks_updated = self.rank_calculator.rank_entries(entries)

        result.best_score = max(entry.period_score for entry in entries)
        result.best_score_updated = self._update_best_score(contest, result.best_score)

        log = logger.warning if result.failed_entries else logger.info
        log("Contest synced", extra=result.to_dict())
        return result
