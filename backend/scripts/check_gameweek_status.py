#!/usr/bin/env python3
"""
Check whether a gameweek has started and whether it is strictly complete
(every fixture finished and bonus points confirmed by FPL).

Read-only: only calls the FPL API.

Usage:
    python3 scripts/check_gameweek_status.py --gameweek 12
"""

import argparse
import asyncio
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
from fpl_api.client import FPLAPIClient
from refresh.gameweek_status import GameweekStatusChecker


def _mark(value: bool) -> str:
    return "✅" if value else "❌"


async def check(gameweek: int) -> bool:
    config = Config()
    async with FPLAPIClient(config) as fpl_client:
        status = await GameweekStatusChecker(fpl_client).check(gameweek)

    print(f"\nGameweek {gameweek}")
    print(f"   {_mark(status.has_started)} started")
    print(f"   {_mark(status.all_fixtures_finished)} all fixtures finished")
    print(f"   {_mark(status.bonus_data_confirmed)} bonus data confirmed")
    print(f"   {_mark(status.is_strictly_complete)} strictly complete")
    if status.error:
        print(f"\n⚠️  Status unavailable: {status.error}")
    elif not status.is_strictly_complete:
        print(f"\nMissing: {', '.join(status.missing_conditions())}")
    print()
    return status.is_strictly_complete


def main():
    parser = argparse.ArgumentParser(description="Check FPL gameweek completion status")
    parser.add_argument("--gameweek", type=int, required=True, help="Gameweek number")
    args = parser.parse_args()

    complete = asyncio.run(check(args.gameweek))
    sys.exit(0 if complete else 1)


if __name__ == "__main__":
    main()
