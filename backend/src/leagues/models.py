"""
Weekly league (contest) and league entry records.

Rows come from the ``weekly_leagues`` and ``league_entries`` tables and are
parsed into dataclasses here so the sync/finalization code works with typed
values (Decimal money, aware datetimes) rather than raw PostgREST dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional


class InvalidStatusTransition(ValueError):
    """Raised when a contest status change is not allowed."""
    pass


class ContestStatus(Enum):
    """Contest lifecycle status."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "ContestStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    ContestStatus.UPCOMING: {ContestStatus.ACTIVE, ContestStatus.CANCELLED},
    ContestStatus.ACTIVE: {ContestStatus.COMPLETED, ContestStatus.CANCELLED},
    ContestStatus.COMPLETED: set(),
    ContestStatus.CANCELLED: set(),
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (FPL or PostgREST style) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


@dataclass(frozen=True)
class PrizeTier:
    """One paid position and its share of the prize pool (percent)."""
    position: int
    percentage_share: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrizeTier":
        position = data.get("position")
        if position is None:
            raise ValueError(f"Prize tier without position: {data}")
        share = data.get("percentage_share", data.get("percentageShare"))
        return cls(position=int(position), percentage_share=to_decimal(share))

    def to_dict(self) -> Dict[str, Any]:
        return {"position": self.position, "percentage_share": float(self.percentage_share)}


@dataclass
class Contest:
    """A weekly league tied to one FPL gameweek."""

    id: str
    gameweek: int
    status: ContestStatus
    name: str = ""
    entry_fee: Decimal = Decimal("0")
    platform_fee_percentage: Decimal = Decimal("10")
    league_type: Optional[str] = None
    prize_tiers: List[PrizeTier] = field(default_factory=list)
    best_score_so_far: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Contest":
        tiers = [PrizeTier.from_dict(t) for t in (row.get("prize_distribution") or [])]
        best = row.get("best_score_so_far")
        return cls(
            id=str(row["id"]),
            gameweek=int(row["gameweek"]),
            status=ContestStatus(row.get("status") or ContestStatus.UPCOMING.value),
            name=row.get("name") or "",
            entry_fee=to_decimal(row.get("entry_fee")),
            platform_fee_percentage=to_decimal(row.get("platform_fee_percentage"), default="10"),
            league_type=row.get("league_type"),
            prize_tiers=tiers,
            best_score_so_far=int(best) if best is not None else None,
        )


@dataclass
class LeagueEntry:
    """One FPL team's membership in a contest."""

    id: str
    contest_id: str
    team_id: int
    joined_at: Optional[datetime] = None
    score_before_period: Optional[int] = None
    period_score: int = 0
    total_score: int = 0
    rank: Optional[int] = None
    payout: Optional[Decimal] = None
    payout_status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LeagueEntry":
        baseline = row.get("score_before_period")
        rank = row.get("rank")
        payout = row.get("payout")
        return cls(
            id=str(row["id"]),
            contest_id=str(row["contest_id"]),
            team_id=int(row["team_id"]),
            joined_at=parse_timestamp(row.get("joined_at")),
            score_before_period=int(baseline) if baseline is not None else None,
            period_score=int(row.get("period_score") or 0),
            total_score=int(row.get("total_score") or 0),
            rank=int(rank) if rank is not None else None,
            payout=to_decimal(payout) if payout is not None else None,
            payout_status=row.get("payout_status"),
        )

    def key(self, **values: Any) -> Dict[str, Any]:
        """Row key for entry writes, merged with the columns being written."""
        row = {"id": self.id, "contest_id": self.contest_id, "team_id": self.team_id}
        row.update(values)
        return row

    def total_for(self, period_score: int) -> int:
        """Total score for a given period score (missing baseline counts as 0)."""
        return (self.score_before_period or 0) + period_score
