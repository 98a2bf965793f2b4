"""
Contest rank assignment.

Ranks are competition ranks on period score: equal scores share a rank and
the next distinct score skips accordingly (50, 50, 30 -> 1, 1, 3). Entries
with equal scores are ordered by join time, then entry id, so the row order
(and therefore every rank) is the same on every run.
"""

import logging
from datetime import datetime, timezone
from typing import List, Tuple

from database.supabase_client import SupabaseClient
from leagues.models import LeagueEntry

logger = logging.getLogger(__name__)

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


def _rank_order(entry: LeagueEntry) -> Tuple[int, datetime, str]:
    return (-entry.period_score, entry.joined_at or _NEVER, entry.id)


def assign_ranks(entries: List[LeagueEntry]) -> List[Tuple[LeagueEntry, int]]:
    """
    Assign competition ranks.

    Returns:
        (entry, rank) pairs in rank order
    """
    ordered = sorted(entries, key=_rank_order)

    ranked = []
    current_rank = 1
    previous_points = None
    for i, entry in enumerate(ordered):
        if previous_points is not None and entry.period_score != previous_points:
            current_rank = i + 1
        ranked.append((entry, current_rank))
        previous_points = entry.period_score
    return ranked


class LeagueRankCalculator:
    """Recomputes and persists contest ranks."""

    def __init__(self, db_client: SupabaseClient):
        self.db_client = db_client

    def rank_entries(self, entries: List[LeagueEntry]) -> int:
        """Rank a given entry snapshot and write every rank in one statement."""
        if not entries:
            return 0
        ranked = assign_ranks(entries)
        updates = []
        for entry, rank in ranked:
            entry.rank = rank
            updates.append(entry.key(rank=rank))
        return self.db_client.update_entry_ranks(updates)

    def recalculate_contest_ranks(self, contest_id: str) -> int:
        """
        Re-read a contest's stored scores and rewrite its ranks.

        Idempotent: with unchanged scores it writes the same ranks again.

        Returns:
            Number of entries ranked
        """
        entries = self.db_client.get_league_entries(contest_id)
        updated = self.rank_entries(entries)
        logger.debug("Recalculated contest ranks", extra={
            "contest_id": contest_id,
            "entries_ranked": updated,
        })
        return updated
