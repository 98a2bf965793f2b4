#!/usr/bin/env python3
"""
Finalize (settle) a weekly league contest.

Refuses unless the contest is active (or already completed) and its gameweek
is strictly complete: every fixture finished and bonus points confirmed.

Usage:
    python3 scripts/finalize_contest.py --contest <contest-id> [--log-file logs/finalize.log]
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging


async def finalize(contest_id: str, log_file: Optional[str] = None) -> bool:
    """Finalize one contest and print the outcome."""
    setup_logging(log_file=log_file)

    config = Config()
    orchestrator = RefreshOrchestrator(config)

    print(f"\n{'='*70}")
    print(f"FINALIZING CONTEST {contest_id}")
    print(f"{'='*70}\n")

    try:
        await orchestrator.initialize()
        result = await orchestrator.finalizer.finalize(contest_id)
    finally:
        await orchestrator.shutdown()

    if not result.success:
        print(f"❌ Rejected ({result.rejection.value}): {result.message}")
        return False

    if result.refinalized:
        print("⚠️  Contest was already completed; settled payouts kept, ledger not credited again")
    if result.payout_drift:
        print(f"⚠️  Recomputed payouts differ from settled payouts for: {result.payout_drift}")
    if result.failed_entries:
        print(f"⚠️  {len(result.failed_entries)} entries could not be resolved and scored 0: "
              f"{result.failed_entries}")

    print(f"Prize pool: {result.prize_pool}\n")
    print(f"   {'Rank':<6} {'Team ID':<12} {'Payout':<12}")
    print(f"   {'-'*6} {'-'*12} {'-'*12}")
    for payout in result.payouts:
        print(f"   {payout.rank or '-':<6} {payout.team_id:<12} {payout.amount:<12}")

    print("\n✅ Contest finalized\n")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Finalize a weekly league contest")
    parser.add_argument(
        "--contest",
        type=str,
        required=True,
        help="Contest ID to finalize"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also append logs to this file"
    )

    args = parser.parse_args()

    try:
        ok = asyncio.run(finalize(args.contest, args.log_file))
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    sys.exit(0 if ok else 2)


if __name__ == "__main__":
    main()
