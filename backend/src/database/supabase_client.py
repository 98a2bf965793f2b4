"""
Supabase client for database operations.

Covers the two tables the settlement engine owns writes on:
``weekly_leagues`` (contests) and ``league_entries``. Entry writes are
updates keyed by entry id, so a row removed mid-run is skipped rather than
re-created.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from supabase import create_client, Client

from config import Config
from leagues.models import Contest, ContestStatus, InvalidStatusTransition, LeagueEntry

logger = logging.getLogger(__name__)

CONTEST_COLUMNS = (
    "id, name, gameweek, status, entry_fee, platform_fee_percentage, "
    "league_type, prize_distribution, best_score_so_far"
)
ENTRY_COLUMNS = (
    "id, contest_id, team_id, joined_at, score_before_period, period_score, "
    "total_score, rank, payout, payout_status"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseClient:
    """Client for interacting with Supabase database."""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Use service key if available for admin operations, otherwise use anon key
        key = self.config.supabase_service_key or self.config.supabase_key

        self.client = create_client(
            self.config.supabase_url,
            key
        )

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    # Contests

    def get_contest(self, contest_id: str) -> Optional[Contest]:
        """Get one contest by id, or None."""
        result = self.client.table("weekly_leagues").select(CONTEST_COLUMNS).eq(
            "id", contest_id
        ).limit(1).execute()
        rows = result.data or []
        return Contest.from_row(rows[0]) if rows else None

    def get_contests(self, status: Optional[ContestStatus] = None) -> List[Contest]:
        """
        Get contests, optionally filtered by status.

        Args:
            status: Only return contests in this status

        Returns:
            List of Contest
        """
        query = self.client.table("weekly_leagues").select(CONTEST_COLUMNS)
        if status is not None:
            query = query.eq("status", status.value)
        result = query.order("gameweek", desc=False).execute()
        return [Contest.from_row(row) for row in (result.data or [])]

    def activate_contests(self, contest_ids: List[str]) -> int:
        """
        Promote upcoming contests to active in one statement.

        Only rows still 'upcoming' are touched, so a contest cancelled in the
        meantime stays cancelled.

        Returns:
            Number of contests activated
        """
        if not contest_ids:
            return 0
        result = self.client.table("weekly_leagues").update({
            "status": ContestStatus.ACTIVE.value,
            "updated_at": _now_iso(),
        }).in_("id", contest_ids).eq("status", ContestStatus.UPCOMING.value).execute()
        return len(result.data or [])

    def update_contest_best_score(self, contest_id: str, best_score: int) -> bool:
        """
        Raise the contest's best_score_so_far watermark.

        The filter makes the write a no-op unless the stored value is null or
        lower, so the watermark can never move down even under racing writers.

        Returns:
            True if the row was updated
        """
        payload = {"best_score_so_far": best_score, "updated_at": _now_iso()}
        result = self.client.table("weekly_leagues").update(payload).eq(
            "id", contest_id
        ).or_(f"best_score_so_far.is.null,best_score_so_far.lt.{best_score}").execute()
        return bool(result.data)

    def set_contest_status(
        self,
        contest_id: str,
        new_status: ContestStatus,
        expected_status: ContestStatus
    ) -> bool:
        """
        Compare-and-set a contest's status.

        Raises:
            InvalidStatusTransition: if expected -> new is not a legal transition

        Returns:
            True if the row was in expected_status and has been updated
        """
        if not expected_status.can_transition_to(new_status):
            raise InvalidStatusTransition(
                f"Cannot move contest from {expected_status.value} to {new_status.value}"
            )
        result = self.client.table("weekly_leagues").update({
            "status": new_status.value,
            "updated_at": _now_iso(),
        }).eq("id", contest_id).eq("status", expected_status.value).execute()
        return bool(result.data)

    # Entries

    def get_league_entries(self, contest_id: str) -> List[LeagueEntry]:
        """Get every entry of a contest."""
        result = self.client.table("league_entries").select(ENTRY_COLUMNS).eq(
            "contest_id", contest_id
        ).execute()
        return [LeagueEntry.from_row(row) for row in (result.data or [])]

    def _update_entries(
        self,
        updates: Iterable[Dict[str, Any]],
        fields: List[str]
    ) -> int:
        """
        Write the listed fields onto existing entry rows, matched by id.

        Update-only: an entry removed since the snapshot was taken matches
        nothing and is skipped, never re-inserted.

        Returns:
            Number of rows that still existed and were written
        """
        now = _now_iso()
        written = 0
        for u in updates:
            payload = {}
            for name in fields:
                value = u.get(name)
                payload[name] = str(value) if isinstance(value, Decimal) else value
            payload["updated_at"] = now
            result = self.client.table("league_entries").update(payload).eq(
                "id", u["id"]
            ).execute()
            if result.data:
                written += 1
            else:
                logger.debug("Entry no longer exists, write skipped", extra={
                    "entry_id": u["id"],
                    "contest_id": u.get("contest_id"),
                })
        return written

    def update_entry_scores(self, updates: Iterable[Dict[str, Any]]) -> int:
        """
        Write period/total scores.

        Args:
            updates: entry key dicts with period_score, total_score

        Returns:
            Number of rows written (removed entries excluded)
        """
        return self._update_entries(updates, ["period_score", "total_score"])

    def update_entry_ranks(self, updates: Iterable[Dict[str, Any]]) -> int:
        """Write ranks (entry key dicts with rank)."""
        return self._update_entries(updates, ["rank"])

    def update_entry_baselines(self, updates: Iterable[Dict[str, Any]]) -> int:
        """Write score_before_period (entry key dicts with score_before_period)."""
        return self._update_entries(updates, ["score_before_period"])

    def update_entry_payouts(self, updates: Iterable[Dict[str, Any]]) -> int:
        """
        Write payouts.

        Args:
            updates: entry key dicts with payout (Decimal) and payout_status

        Returns:
            Number of rows written (removed entries excluded)
        """
        return self._update_entries(updates, ["payout", "payout_status"])
