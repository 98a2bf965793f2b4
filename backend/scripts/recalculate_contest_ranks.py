#!/usr/bin/env python3
"""
Manually recalculate ranks for a weekly league contest from its stored
period scores.

Useful when:
- Scores were corrected by hand
- Tied entries need proper rank assignment
"""

import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from database.supabase_client import SupabaseClient
from refresh.ranks import LeagueRankCalculator


def recalculate_ranks(contest_id: str):
    """Recalculate ranks for a specific contest."""
    print(f"\n{'='*70}")
    print(f"RECALCULATING RANKS FOR CONTEST {contest_id}")
    print(f"{'='*70}\n")

    config = Config()
    db_client = SupabaseClient(config)

    contest = db_client.get_contest(contest_id)
    if not contest:
        print(f"❌ Contest {contest_id} not found")
        return

    print(f"✅ Contest found: {contest.name or 'N/A'} (GW{contest.gameweek}, {contest.status.value})\n")

    updated = LeagueRankCalculator(db_client).recalculate_contest_ranks(contest_id)
    print(f"✅ Ranks recalculated for {updated} entries\n")

    standings = sorted(
        db_client.get_league_entries(contest_id),
        key=lambda e: (e.rank or 0, e.id)
    )

    print("Updated Standings:")
    print(f"   {'Rank':<6} {'Team ID':<12} {'Period':<8} {'Total':<8}")
    print(f"   {'-'*6} {'-'*12} {'-'*8} {'-'*8}")
    for entry in standings:
        print(f"   {entry.rank or 'NULL':<6} {entry.team_id:<12} {entry.period_score:<8} {entry.total_score:<8}")

    print(f"\n{'='*70}\n")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Recalculate contest ranks")
    parser.add_argument(
        "--contest",
        type=str,
        required=True,
        help="Contest ID to recalculate ranks for"
    )

    args = parser.parse_args()

    try:
        recalculate_ranks(args.contest)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    main()
