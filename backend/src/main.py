#!/usr/bin/env python3
"""
Weekly league sync loop.

Every SYNC_INTERVAL_SECONDS: promote upcoming contests whose gameweek has
kicked off (capturing entrant baselines first), then pull live FPL scores into
every active contest and re-rank it. Contests are never settled from here;
settlement goes through the finalize endpoint or scripts/finalize_contest.py.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class SettlementService:
    """Owns the orchestrator for the process lifetime and stops it on SIGTERM/SIGINT."""

    def __init__(self):
        self.config = Config()
        self.orchestrator = None
        self.running = False

    async def start(self):
        """Initialize clients and block in the sync loop until shutdown."""
        logger.info("Starting FPL League Settlement Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment
        })

        try:
            self.orchestrator = RefreshOrchestrator(self.config)
            await self.orchestrator.initialize()

            # Set up signal handlers for graceful shutdown
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            self.running = True

            await self.orchestrator.run()

        except Exception as e:
            logger.error("Fatal error in settlement service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise

    def _handle_shutdown(self, signum):
        """Stop the sync loop and close the FPL client."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        self.running = False
        if self.orchestrator:
            asyncio.create_task(self.orchestrator.shutdown())


async def main():
    setup_logging()

    service = SettlementService()
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
