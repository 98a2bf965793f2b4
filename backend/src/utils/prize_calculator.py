"""
Prize pool and payout calculation.

All money is Decimal. Payouts per entry are rounded down to 2 decimal places
(ROUND_DOWN), so a position never pays out more than its share; when several
entries share a paid rank the share is split evenly between them.
"""

import logging
from collections import defaultdict
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from leagues.models import LeagueEntry, PrizeTier

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
SHARE_TOLERANCE = Decimal("0.01")
PAID_TO_WALLET = "PAID_TO_WALLET"

DEFAULT_PRIZE_DISTRIBUTIONS: Dict[str, List[Tuple[int, str]]] = {
    "duo": [(1, "60"), (2, "40")],
    "tri": [(1, "50"), (2, "30"), (3, "20")],
    "jackpot": [(1, "100")],
}


def default_prize_tiers(league_type: Optional[str]) -> List[PrizeTier]:
    """Prize tiers for a league type; unknown types pay 100% to first."""
    shares = DEFAULT_PRIZE_DISTRIBUTIONS.get(league_type or "", [(1, "100")])
    return [PrizeTier(position=pos, percentage_share=Decimal(share)) for pos, share in shares]


def validate_prize_tiers(tiers: Sequence[PrizeTier]) -> None:
    """
    Check a prize table: positive unique positions, shares summing to 100.

    Raises:
        ValueError: describing the first problem found
    """
    if not tiers:
        raise ValueError("Prize table is empty")
    positions = [t.position for t in tiers]
    if any(p < 1 for p in positions):
        raise ValueError(f"Prize positions must be >= 1: {positions}")
    if len(set(positions)) != len(positions):
        raise ValueError(f"Duplicate prize positions: {positions}")
    if any(t.percentage_share < 0 for t in tiers):
        raise ValueError("Prize shares must not be negative")
    total = sum((t.percentage_share for t in tiers), Decimal("0"))
    if abs(total - HUNDRED) > SHARE_TOLERANCE:
        raise ValueError(f"Prize shares sum to {total}, expected 100")


def applicable_prize_tiers(tiers: Sequence[PrizeTier], participant_count: int) -> List[PrizeTier]:
    """
    Drop positions that cannot exist with this many participants.

    If nothing is left but there are participants, the whole pool goes to first.
    """
    applicable = sorted(
        (t for t in tiers if t.position <= participant_count),
        key=lambda t: t.position,
    )
    if not applicable and participant_count > 0:
        return [PrizeTier(position=1, percentage_share=HUNDRED)]
    return applicable


def calculate_prize_pool(
    entry_fee: Decimal,
    entry_count: int,
    platform_fee_percentage: Decimal
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Returns:
        (total_pot, platform_fee, prize_pool) with prize_pool floored at 0
    """
    total_pot = Decimal(entry_fee) * entry_count
    platform_fee = total_pot * Decimal(platform_fee_percentage) / HUNDRED
    prize_pool = max(Decimal("0"), total_pot - platform_fee)
    return total_pot, platform_fee, prize_pool


def calculate_payouts(
    entries: Sequence[LeagueEntry],
    tiers: Sequence[PrizeTier],
    prize_pool: Decimal
) -> Dict[str, Tuple[Decimal, Optional[str]]]:
    """
    Work out every entry's payout from its final rank.

    Args:
        entries: Entries with final ranks
        tiers: Applicable prize tiers
        prize_pool: Pool after platform fee

    Returns:
        entry id -> (payout, payout_status); non-winners get (0, None)
    """
    payouts: Dict[str, Tuple[Decimal, Optional[str]]] = {
        entry.id: (Decimal("0.00"), None) for entry in entries
    }

    by_rank: Dict[int, List[LeagueEntry]] = defaultdict(list)
    for entry in entries:
        if entry.rank is not None and entry.rank > 0:
            by_rank[entry.rank].append(entry)
        else:
            logger.warning("Entry has no valid rank, excluded from prizes", extra={
                "entry_id": entry.id,
                "team_id": entry.team_id,
                "rank": entry.rank,
            })

    if prize_pool <= 0:
        logger.info("Prize pool is 0, no payouts")
        return payouts

    for tier in tiers:
        holders = by_rank.get(tier.position, [])
        position_amount = prize_pool * tier.percentage_share / HUNDRED
        if not holders:
            logger.info("No entry holds paid position", extra={
                "position": tier.position,
                "unpaid_amount": str(position_amount),
            })
            continue
        per_entry = (position_amount / len(holders)).quantize(CENT, rounding=ROUND_DOWN)
        if per_entry <= 0:
            continue
        for entry in holders:
            payouts[entry.id] = (per_entry, PAID_TO_WALLET)

    return payouts
