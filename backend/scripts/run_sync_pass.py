#!/usr/bin/env python3
"""
Script to manually trigger one activation + sync pass.

This will:
1. Activate upcoming contests whose gameweek has kicked off (capturing baselines)
2. Sync live scores for every active contest
3. Recalculate ranks and best scores

Usage:
    python3 scripts/run_sync_pass.py
"""

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
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging


async def run_sync_pass():
    """Run a single activation + sync pass."""
    setup_logging()

    config = Config()
    orchestrator = RefreshOrchestrator(config)

    print("🔄 Initializing refresh orchestrator...\n")

    try:
        await orchestrator.initialize()

        print("✅ Orchestrator initialized")
        print("🔄 Running activation + sync pass...\n")

        result = await orchestrator.run_activation_and_updates()

        print(f"\n{'='*70}")
        print(f"   Contests activated: {result.activated_count}")
        print(f"   Contests processed: {result.processed_count}")
        print(f"   Entries updated:    {result.entries_updated}")
        print(f"   Ranks updated:      {result.ranks_updated}")
        print(f"{'='*70}")

        if result.errors:
            print(f"\n⚠️  {len(result.errors)} error(s):")
            for error in result.errors:
                print(f"   - {error['contest_id']}: {error['error']}")
            sys.exit(1)

        print("\n✅ Sync pass completed successfully!")

    except Exception as e:
        print(f"\n❌ Error during sync pass: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    finally:
        await orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(run_sync_pass())
