"""
Points calculation utilities.

Recomputes an entry's gameweek points from its picks and the live
per-element points feed. Used only as the fallback when the authoritative
entry score has not been populated yet.
"""

import logging
from typing import Any, Dict, List, Mapping

logger = logging.getLogger(__name__)


class PointsCalculator:
    """Calculates entry gameweek points from picks + live element points."""

    @staticmethod
    def pick_multiplier(pick: Dict[str, Any]) -> int:
        """
        Multiplier for a pick as published by FPL.

        FPL already bakes chips and captaincy into ``multiplier``: 0 for bench
        (1 under bench boost), 2 for captain, 3 for triple captain.
        """
        value = pick.get("multiplier")
        if value is None:
            # Older payloads: starters 1, bench 0
            position = pick.get("position") or 0
            return 1 if position and position <= 11 else 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def calculate_raw_points(
        self,
        picks: List[Dict[str, Any]],
        live_points: Mapping[int, int]
    ) -> int:
        """
        Sum of live points times multiplier over an entry's picks.

        Args:
            picks: Entry picks ({element, multiplier, position})
            live_points: element id -> live total points

        Returns:
            Raw points before transfer cost
        """
        raw_points = 0
        for pick in picks:
            element = pick.get("element")
            if element is None:
                continue
            points = live_points.get(int(element), 0)
            raw_points += points * self.pick_multiplier(pick)
        return raw_points

    def calculate_from_live(
        self,
        picks: List[Dict[str, Any]],
        live_points: Mapping[int, int],
        transfer_cost: int = 0
    ) -> Dict[str, int]:
        """
        Calculate entry gameweek points from live data.

        Args:
            picks: Entry picks
            live_points: element id -> live total points
            transfer_cost: Points deducted for extra transfers

        Returns:
            Dictionary with raw_points, transfer_cost and gameweek_points (net)
        """
        raw_points = self.calculate_raw_points(picks, live_points)
        gameweek_points = raw_points - transfer_cost

        logger.debug("Calculated points from live data", extra={
            "picks_count": len(picks),
            "raw_points": raw_points,
            "transfer_cost": transfer_cost,
        })

        return {
            "raw_points": raw_points,
            "transfer_cost": transfer_cost,
            "gameweek_points": gameweek_points,
        }
