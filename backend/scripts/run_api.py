#!/usr/bin/env python3
"""Run the backend API server (cron sync trigger, contest finalization, gameweek status)."""
import os
import sys
from pathlib import Path

backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend / "src"))
os.chdir(backend)

import uvicorn

from utils.logger import setup_logging

if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("API_PORT", "8000"))
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
        log_config=None,
    )
