"""
Contest finalization.

Settles a contest once its gameweek is strictly complete (every fixture
finished AND bonus points confirmed): one last score sync, final ranks,
prize payouts, then the one-way ``active -> completed`` status change.

Re-finalizing a completed contest is allowed and refreshes scores and ranks,
but stored payouts are never rewritten: any entry whose recomputed payout
differs is reported as drift. The ledger is only ever credited by the call
that actually moved the contest to completed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from config import Config
from database.supabase_client import SupabaseClient
from fpl_api.client import FPLAPIClient
from leagues.models import Contest, ContestStatus, LeagueEntry, PrizeTier
from refresh.contest_sync import ContestSynchronizer
from refresh.gameweek_status import GameweekStatusChecker
from utils.prize_calculator import (
    applicable_prize_tiers,
    calculate_payouts,
    calculate_prize_pool,
    default_prize_tiers,
    validate_prize_tiers,
)

logger = logging.getLogger(__name__)


class FinalizationRejection(Enum):
    """Why a finalize request was refused."""
    CONTEST_NOT_FOUND = "contest_not_found"
    INVALID_STATUS = "invalid_status"
    FIXTURES_NOT_FINISHED = "fixtures_not_finished"
    BONUS_NOT_CONFIRMED = "bonus_not_confirmed"
    STATUS_UNAVAILABLE = "status_unavailable"
    INVALID_PRIZE_TABLE = "invalid_prize_table"


@dataclass(frozen=True)
class EntryPayout:
    entry_id: str
    team_id: int
    rank: Optional[int]
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "team_id": self.team_id,
            "rank": self.rank,
            "amount": str(self.amount),
        }


@dataclass
class FinalizationResult:
    """Outcome of a finalize call: either success with payouts or a rejection."""

    contest_id: str
    success: bool
    rejection: Optional[FinalizationRejection] = None
    message: str = ""
    refinalized: bool = False
    prize_pool: Decimal = Decimal("0")
    payouts: List[EntryPayout] = field(default_factory=list)
    entries_updated: int = 0
    ranks_updated: int = 0
    failed_entries: List[int] = field(default_factory=list)
    payout_drift: List[str] = field(default_factory=list)

    @classmethod
    def rejected(
        cls,
        contest_id: str,
        rejection: FinalizationRejection,
        message: str
    ) -> "FinalizationResult":
        return cls(contest_id=contest_id, success=False, rejection=rejection, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contest_id": self.contest_id,
            "success": self.success,
            "rejection": self.rejection.value if self.rejection else None,
            "message": self.message,
            "refinalized": self.refinalized,
            "prize_pool": str(self.prize_pool),
            "payouts": [p.to_dict() for p in self.payouts],
            "entries_updated": self.entries_updated,
            "ranks_updated": self.ranks_updated,
            "failed_entries": list(self.failed_entries),
            "payout_drift": list(self.payout_drift),
        }


class PayoutLedger(Protocol):
    """Whatever credits winners' wallets. Called once per settled contest."""

    async def credit_payouts(self, contest: Contest, payouts: List[EntryPayout]) -> None:
        ...


class LoggingPayoutLedger:
    """Ledger that only records the credit instruction in the logs."""

    async def credit_payouts(self, contest: Contest, payouts: List[EntryPayout]) -> None:
        for payout in payouts:
            logger.info("Payout credit issued", extra={
                "contest_id": contest.id,
                "gameweek": contest.gameweek,
                **payout.to_dict(),
            })


class ContestFinalizer:
    """Gates and performs contest settlement, one caller per contest at a time."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        db_client: SupabaseClient,
        config: Config,
        status_checker: Optional[GameweekStatusChecker] = None,
        synchronizer: Optional[ContestSynchronizer] = None,
        ledger: Optional[PayoutLedger] = None
    ):
        self.db_client = db_client
        self.config = config
        self.status_checker = status_checker or GameweekStatusChecker(fpl_client)
        self.synchronizer = synchronizer or ContestSynchronizer(
            fpl_client, db_client, config, status_checker=self.status_checker
        )
        self.ledger = ledger or LoggingPayoutLedger()
        # contest id -> (lock, callers holding or waiting on it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _acquire_lock_ref(self, contest_id: str) -> asyncio.Lock:
        lock, users = self._locks.get(contest_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[contest_id] = (lock, users + 1)
        return lock

    def _release_lock_ref(self, contest_id: str) -> None:
        lock, users = self._locks[contest_id]
        if users <= 1:
            del self._locks[contest_id]
        else:
            self._locks[contest_id] = (lock, users - 1)

    async def finalize(self, contest_id: str) -> FinalizationResult:
        """
        Finalize a contest.

        Preconditions are checked in order and each failure comes back as a
        rejected FinalizationResult rather than an exception. Persistence
        errors do propagate.
        """
        lock = self._acquire_lock_ref(contest_id)
        try:
            async with lock:
                return await self._finalize_locked(contest_id)
        finally:
            self._release_lock_ref(contest_id)

    async def _finalize_locked(self, contest_id: str) -> FinalizationResult:
        contest = self.db_client.get_contest(contest_id)
        if contest is None:
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.CONTEST_NOT_FOUND,
                f"Contest {contest_id} not found"
            )

        if contest.status not in (ContestStatus.ACTIVE, ContestStatus.COMPLETED):
            logger.warning("Finalization rejected, contest not active", extra={
                "contest_id": contest_id,
                "status": contest.status.value,
            })
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.INVALID_STATUS,
                f"Contest is {contest.status.value}, only active contests can be finalized"
            )

        refinalized = contest.status == ContestStatus.COMPLETED
        if refinalized:
            logger.warning("Re-finalizing completed contest", extra={
                "contest_id": contest_id,
                "gameweek": contest.gameweek,
            })

        status = await self.status_checker.check(contest.gameweek)
        if status.error:
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.STATUS_UNAVAILABLE,
                f"Gameweek {contest.gameweek} status unavailable: {status.error}"
            )
        if not status.all_fixtures_finished:
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.FIXTURES_NOT_FINISHED,
                f"Gameweek {contest.gameweek}: fixtures not finished"
            )
        if not status.bonus_data_confirmed:
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.BONUS_NOT_CONFIRMED,
                f"Gameweek {contest.gameweek}: bonus data not confirmed"
            )

        tiers = contest.prize_tiers or default_prize_tiers(contest.league_type)
        try:
            validate_prize_tiers(tiers)
        except ValueError as e:
            logger.error("Finalization rejected, invalid prize table", extra={
                "contest_id": contest_id,
                "error": str(e),
            })
            return FinalizationResult.rejected(
                contest_id, FinalizationRejection.INVALID_PRIZE_TABLE, str(e)
            )

        entries = self.db_client.get_league_entries(contest_id)
        sync_result = await self.synchronizer.sync_contest(contest, entries=entries, status=status)
        if sync_result.failed_entries:
            logger.warning("Final sync incomplete, settling on available scores", extra={
                "contest_id": contest_id,
                "failed_entries": sync_result.failed_entries,
            })

        prize_pool, payouts = self._compute_payouts(contest, entries, tiers)
        payout_drift: List[str] = []
        if refinalized and any(entry.payout_status is not None for entry in entries):
            # Payouts were settled already; they stay as stored
            payout_drift = [
                entry.id for entry in entries
                if (entry.payout or Decimal("0")) != payouts[entry.id][0]
            ]
            if payout_drift:
                logger.warning("Recomputed payouts differ from settled payouts, keeping settled", extra={
                    "contest_id": contest_id,
                    "entries": payout_drift,
                })
            payouts = {
                entry.id: (entry.payout or Decimal("0"), entry.payout_status)
                for entry in entries
            }
        else:
            self.db_client.update_entry_payouts([
                entry.key(payout=payouts[entry.id][0], payout_status=payouts[entry.id][1])
                for entry in entries
            ])

        winners = [
            EntryPayout(entry.id, entry.team_id, entry.rank, payouts[entry.id][0])
            for entry in sorted(entries, key=lambda e: (e.rank or 0, e.id))
            if payouts[entry.id][0] > 0
        ]

        if not refinalized:
            transitioned = self.db_client.set_contest_status(
                contest_id, ContestStatus.COMPLETED, ContestStatus.ACTIVE
            )
            if transitioned:
                await self.ledger.credit_payouts(contest, winners)
            else:
                logger.warning("Contest left active state concurrently, ledger not credited", extra={
                    "contest_id": contest_id,
                })
                refinalized = True

        logger.info("Contest finalized", extra={
            "contest_id": contest_id,
            "gameweek": contest.gameweek,
            "prize_pool": str(prize_pool),
            "winners": len(winners),
            "refinalized": refinalized,
        })

        return FinalizationResult(
            contest_id=contest_id,
            success=True,
            message="Contest finalized",
            refinalized=refinalized,
            prize_pool=prize_pool,
            payouts=winners,
            entries_updated=sync_result.entries_updated,
            ranks_updated=sync_result.ranks_updated,
            failed_entries=list(sync_result.failed_entries),
            payout_drift=payout_drift,
        )

    def _compute_payouts(
        self,
        contest: Contest,
        entries: List[LeagueEntry],
        tiers: List[PrizeTier]
    ) -> Tuple[Decimal, Dict[str, Tuple[Decimal, Optional[str]]]]:
        total_pot, platform_fee, prize_pool = calculate_prize_pool(
            contest.entry_fee, len(entries), contest.platform_fee_percentage
        )
        logger.debug("Prize pool calculated", extra={
            "contest_id": contest.id,
            "total_pot": str(total_pot),
            "platform_fee": str(platform_fee),
            "prize_pool": str(prize_pool),
        })
        payouts = calculate_payouts(
            entries, applicable_prize_tiers(tiers, len(entries)), prize_pool
        )
        return prize_pool, payouts
