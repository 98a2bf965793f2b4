"""
Refresh Orchestrator - Coordinates contest activation and score sync.

One pass: promote upcoming contests whose gameweek has kicked off to active
(after capturing their entries' baselines), then sync every active contest
with bounded concurrency. The service loop repeats the pass on a fixed
cadence; the API and scripts trigger single passes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import Config
from database.supabase_client import SupabaseClient
from fpl_api.client import FPLAPIClient
from leagues.models import Contest, ContestStatus
from refresh.baseline_capture import BaselineCapture
from refresh.contest_sync import ContestSynchronizer, ContestSyncResult
from refresh.finalization import ContestFinalizer, PayoutLedger
from refresh.gameweek_status import GameweekStatus, GameweekStatusChecker

logger = logging.getLogger(__name__)

GLOBAL_ERROR_ID = "GLOBAL"


@dataclass
class ActivationRunResult:
    """Summary of one activation + sync pass."""

    activated_count: int = 0
    processed_count: int = 0
    entries_updated: int = 0
    ranks_updated: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def add_error(self, contest_id: str, error: Any):
        self.errors.append({"contest_id": contest_id, "error": str(error)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activated_count": self.activated_count,
            "processed_count": self.processed_count,
            "entries_updated": self.entries_updated,
            "ranks_updated": self.ranks_updated,
            "errors": list(self.errors),
        }


class RefreshOrchestrator:
    """Orchestrates contest activation, sync and finalization."""

    def __init__(
        self,
        config: Config,
        fpl_client: Optional[FPLAPIClient] = None,
        db_client: Optional[SupabaseClient] = None,
        ledger: Optional[PayoutLedger] = None
    ):
        self.config = config
        self.fpl_client = fpl_client
        self.db_client = db_client
        self.ledger = ledger
        self.status_checker: Optional[GameweekStatusChecker] = None
        self.baseline_capture: Optional[BaselineCapture] = None
        self.synchronizer: Optional[ContestSynchronizer] = None
        self.finalizer: Optional[ContestFinalizer] = None
        self.running = False

    async def initialize(self):
        """Initialize orchestrator and clients."""
        logger.info("Orchestrator starting")

        if self.fpl_client is None:
            self.fpl_client = FPLAPIClient(self.config)
        if self.db_client is None:
            self.db_client = SupabaseClient(self.config)
        self.status_checker = GameweekStatusChecker(self.fpl_client)
        self.baseline_capture = BaselineCapture(
            self.fpl_client, self.db_client, self.config
        )
        self.synchronizer = ContestSynchronizer(
            self.fpl_client, self.db_client, self.config,
            status_checker=self.status_checker,
        )
        self.finalizer = ContestFinalizer(
            self.fpl_client, self.db_client, self.config,
            status_checker=self.status_checker,
            synchronizer=self.synchronizer,
            ledger=self.ledger,
        )

        logger.info("Orchestrator ready")

    async def shutdown(self):
        """Shutdown orchestrator gracefully."""
        logger.info("Orchestrator shutting down")
        self.running = False

        if self.fpl_client:
            await self.fpl_client.close()

        logger.info("Orchestrator stopped")

    async def _activate_started_contests(self, result: ActivationRunResult):
        try:
            upcoming = self.db_client.get_contests(ContestStatus.UPCOMING)
        except Exception as e:
            logger.error("Failed to list upcoming contests", extra={"error": str(e)}, exc_info=True)
            result.add_error(GLOBAL_ERROR_ID, e)
            return

        if not upcoming:
            return

        statuses = await self.status_checker.check_many(c.gameweek for c in upcoming)
        started = [c for c in upcoming if statuses[c.gameweek].has_started]
        if not started:
            return

        for contest in started:
            try:
                await self.baseline_capture.capture_contest_baselines(contest)
            except Exception as e:
                # Missing baselines count as 0 in totals
                logger.error("Baseline capture failed, activating anyway", extra={
                    "contest_id": contest.id,
                    "gameweek": contest.gameweek,
                    "error": str(e),
                }, exc_info=True)
                result.add_error(contest.id, e)

        try:
            result.activated_count = self.db_client.activate_contests([c.id for c in started])
        except Exception as e:
            logger.error("Failed to activate contests", extra={
                "contest_ids": [c.id for c in started],
                "error": str(e),
            }, exc_info=True)
            result.add_error(GLOBAL_ERROR_ID, e)
            return

        logger.info("Activated contests", extra={
            "activated_count": result.activated_count,
            "gameweeks": sorted({c.gameweek for c in started}),
        })

    async def _sync_one(
        self,
        semaphore: asyncio.Semaphore,
        contest: Contest,
        status: GameweekStatus
    ) -> ContestSyncResult:
        async with semaphore:
            return await self.synchronizer.sync_contest(contest, status=status)

    async def _sync_active_contests(self, result: ActivationRunResult):
        try:
            active = self.db_client.get_contests(ContestStatus.ACTIVE)
        except Exception as e:
            logger.error("Failed to list active contests", extra={"error": str(e)}, exc_info=True)
            result.add_error(GLOBAL_ERROR_ID, e)
            return

        if not active:
            return

        statuses = await self.status_checker.check_many(c.gameweek for c in active)
        semaphore = asyncio.Semaphore(self.config.contest_sync_concurrency)
        outcomes = await asyncio.gather(
            *(self._sync_one(semaphore, c, statuses[c.gameweek]) for c in active),
            return_exceptions=True
        )

        for contest, outcome in zip(active, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Contest sync failed", extra={
                    "contest_id": contest.id,
                    "gameweek": contest.gameweek,
                    "error": str(outcome),
                }, exc_info=outcome)
                result.add_error(contest.id, outcome)
                continue
            result.processed_count += 1
            result.entries_updated += outcome.entries_updated
            result.ranks_updated += outcome.ranks_updated

    async def run_activation_and_updates(self) -> ActivationRunResult:
        """
        Run one activation + sync pass.

        Never raises for per-contest or listing failures; they are collected
        in the result's errors, listing failures under contest_id "GLOBAL".
        """
        result = ActivationRunResult()
        await self._activate_started_contests(result)
        await self._sync_active_contests(result)

        log = logger.warning if result.errors else logger.info
        log("Activation and sync pass complete", extra=result.to_dict())
        return result

    async def run(self):
        """Repeat activation + sync passes until shutdown."""
        logger.info("Refresh loop started", extra={
            "interval_seconds": self.config.sync_interval_seconds,
        })
        self.running = True
        try:
            while self.running:
                try:
                    await self.run_activation_and_updates()
                except Exception as e:
                    logger.error("Refresh pass error", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(self.config.sync_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Refresh loop cancelled")
        finally:
            self.running = False
