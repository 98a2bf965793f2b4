"""
Shared fixtures: an in-memory stand-in for SupabaseClient and a scripted FPL
client, so sync/finalization logic runs without network or database.
"""

import asyncio
import sys
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add src directory to path
src_dir = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from fpl_api.client import EntryGameweekScore, FPLAPINotFoundError
from leagues.models import Contest, ContestStatus, InvalidStatusTransition, LeagueEntry

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def make_config(**overrides) -> Config:
    values = dict(
        supabase_url="http://localhost:54321",
        supabase_key="test-key",
        min_request_interval=0.0,
        retry_backoff_base=0.0,
        entry_retry_backoff=0.0,
        sync_batch_sleep_seconds=0.0,
    )
    values.update(overrides)
    return Config(**values)


class InMemoryDB:
    """Implements the SupabaseClient methods the engine uses, over plain dicts."""

    def __init__(self):
        self.contests: Dict[str, Dict[str, Any]] = {}
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.score_writes = 0
        self.payout_writes = 0
        self.fail_entry_reads = False

    def add_contest(self, contest_id: str, gameweek: int, status: str = "active", **fields) -> None:
        row = {
            "id": contest_id,
            "name": f"Contest {contest_id}",
            "gameweek": gameweek,
            "status": status,
            "entry_fee": "200",
            "platform_fee_percentage": "10",
            "league_type": "tri",
            "prize_distribution": None,
            "best_score_so_far": None,
        }
        row.update(fields)
        self.contests[contest_id] = row

    def add_entry(
        self,
        entry_id: str,
        contest_id: str,
        team_id: int,
        joined_minutes: int = 0,
        **fields
    ) -> None:
        row = {
            "id": entry_id,
            "contest_id": contest_id,
            "team_id": team_id,
            "joined_at": (NOW - timedelta(days=3) + timedelta(minutes=joined_minutes)).isoformat(),
            "score_before_period": 0,
            "period_score": 0,
            "total_score": 0,
            "rank": None,
            "payout": None,
            "payout_status": None,
        }
        row.update(fields)
        self.entries[entry_id] = row

    def entry(self, entry_id: str) -> Dict[str, Any]:
        return self.entries[entry_id]

    # SupabaseClient interface

    def get_contest(self, contest_id: str) -> Optional[Contest]:
        row = self.contests.get(contest_id)
        return Contest.from_row(deepcopy(row)) if row else None

    def get_contests(self, status: Optional[ContestStatus] = None) -> List[Contest]:
        rows = [
            r for r in self.contests.values()
            if status is None or r["status"] == status.value
        ]
        return [Contest.from_row(deepcopy(r)) for r in sorted(rows, key=lambda r: r["gameweek"])]

    def activate_contests(self, contest_ids: List[str]) -> int:
        count = 0
        for contest_id in contest_ids:
            row = self.contests.get(contest_id)
            if row and row["status"] == ContestStatus.UPCOMING.value:
                row["status"] = ContestStatus.ACTIVE.value
                count += 1
        return count

    def update_contest_best_score(self, contest_id: str, best_score: int) -> bool:
        row = self.contests[contest_id]
        stored = row.get("best_score_so_far")
        if stored is not None and stored >= best_score:
            return False
        row["best_score_so_far"] = best_score
        return True

    def set_contest_status(
        self,
        contest_id: str,
        new_status: ContestStatus,
        expected_status: ContestStatus
    ) -> bool:
        if not expected_status.can_transition_to(new_status):
            raise InvalidStatusTransition(f"{expected_status.value} -> {new_status.value}")
        row = self.contests.get(contest_id)
        if row is None or row["status"] != expected_status.value:
            return False
        row["status"] = new_status.value
        return True

    def get_league_entries(self, contest_id: str) -> List[LeagueEntry]:
        if self.fail_entry_reads:
            raise RuntimeError("database unavailable")
        return [
            LeagueEntry.from_row(deepcopy(r))
            for r in self.entries.values() if r["contest_id"] == contest_id
        ]

    def _write(self, updates, fields) -> int:
        # Update-only, like the real client: removed entries are skipped
        count = 0
        for u in updates:
            row = self.entries.get(u["id"])
            if row is None:
                continue
            for name in fields:
                row[name] = u.get(name)
            count += 1
        return count

    def update_entry_scores(self, updates) -> int:
        self.score_writes += 1
        return self._write(updates, ["period_score", "total_score"])

    def update_entry_ranks(self, updates) -> int:
        return self._write(updates, ["rank"])

    def update_entry_baselines(self, updates) -> int:
        return self._write(updates, ["score_before_period"])

    def update_entry_payouts(self, updates) -> int:
        self.payout_writes += 1
        return self._write(updates, ["payout", "payout_status"])


class FakeFPLClient:
    """
    Scripted FPL client.

    ``scores[(team_id, gw)]`` is either an int (net points), an
    EntryGameweekScore, an exception, or a list of those consumed per call.
    """

    def __init__(self):
        self.fixtures: Dict[int, Any] = {}
        self.event_status: Any = []
        self.scores: Dict[Any, Any] = {}
        self.live: Dict[int, Any] = {}
        self.picks: Dict[Any, List[Dict[str, Any]]] = {}
        self.histories: Dict[int, Any] = {}
        self.score_calls: Dict[Any, int] = {}
        self.picks_calls = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        # called with (team_id, gameweek) before each score lookup
        self.on_score_call = None
        self.live_calls = 0
        self.closed = False

    def start_gameweek(self, gameweek: int, finished: bool = False, bonus: bool = False):
        """Two fixtures kicked off yesterday; optionally finished and bonus-confirmed."""
        kickoff = NOW - timedelta(days=1)
        self.fixtures[gameweek] = [
            {"id": 1, "event": gameweek, "kickoff_time": kickoff.isoformat(), "finished": finished},
            {"id": 2, "event": gameweek, "kickoff_time": (kickoff + timedelta(hours=2)).isoformat(),
             "finished": finished},
        ]
        self.event_status = [
            {"date": kickoff.date().isoformat(), "event": gameweek, "bonus_added": bonus, "points": "r"},
        ]

    def upcoming_gameweek(self, gameweek: int):
        kickoff = NOW + timedelta(days=2)
        self.fixtures[gameweek] = [
            {"id": 3, "event": gameweek, "kickoff_time": kickoff.isoformat(), "finished": False},
        ]

    @staticmethod
    def _raise_or_return(value):
        if isinstance(value, Exception):
            raise value
        return value

    async def get_fixtures(self, gameweek: int):
        return self._raise_or_return(self.fixtures.get(gameweek, []))

    async def get_event_status(self):
        return self._raise_or_return(self.event_status)

    async def get_live_unit_points(self, gameweek: int):
        self.live_calls += 1
        return self._raise_or_return(self.live.get(gameweek, {}))

    async def get_entry_gameweek_score(self, team_id: int, gameweek: int):
        key = (team_id, gameweek)
        self.score_calls[key] = self.score_calls.get(key, 0) + 1
        if self.on_score_call is not None:
            self.on_score_call(team_id, gameweek)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            # yield so sibling resolutions in the same group overlap
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        value = self.scores.get(key, 0)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        value = self._raise_or_return(value)
        if isinstance(value, EntryGameweekScore):
            return value
        return EntryGameweekScore(team_id=team_id, gameweek=gameweek, points=value)

    async def get_entry_picks(self, team_id: int, gameweek: int):
        self.picks_calls += 1
        return self._raise_or_return(self.picks.get((team_id, gameweek), []))

    async def get_entry_history(self, team_id: int):
        return self._raise_or_return(self.histories.get(team_id, FPLAPINotFoundError("no entry", 404)))

    async def close(self):
        self.closed = True


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def fpl():
    return FakeFPLClient()


@pytest.fixture
def clock():
    return lambda: NOW

