"""
Backend API: trigger surface for schedulers and operators.

- POST /api/v1/cron/update-leaderboards  run one activation + sync pass
- POST /api/v1/contests/{id}/finalize   settle a contest
- GET  /api/v1/gameweeks/{gw}/status    read-only gameweek status
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Config
from refresh.finalization import FinalizationRejection
from refresh.orchestrator import RefreshOrchestrator

app = FastAPI(title="FPL League Settlement API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy init so we don't require Supabase in tests
_config: Config | None = None
_orchestrator: RefreshOrchestrator | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


async def get_orchestrator(config: Config = Depends(get_config)) -> RefreshOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        orchestrator = RefreshOrchestrator(config)
        await orchestrator.initialize()
        _orchestrator = orchestrator
    return _orchestrator


def require_cron_secret(
    authorization: str | None = Header(default=None),
    config: Config = Depends(get_config),
):
    """Bearer check for the cron endpoint. Without a secret only non-production is open."""
    if not config.cron_secret:
        if config.is_production:
            raise HTTPException(status_code=401, detail="CRON_SECRET is not configured")
        return
    if authorization != f"Bearer {config.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.post("/api/v1/cron/update-leaderboards", dependencies=[Depends(require_cron_secret)])
async def update_leaderboards(orchestrator: RefreshOrchestrator = Depends(get_orchestrator)):
    """Activate started contests and sync every active contest once."""
    result = await orchestrator.run_activation_and_updates()
    return result.to_dict()


@app.post("/api/v1/contests/{contest_id}/finalize")
async def finalize_contest(
    contest_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.finalizer.finalize(contest_id)
    if result.success:
        return result.to_dict()
    status_code = 404 if result.rejection == FinalizationRejection.CONTEST_NOT_FOUND else 400
    return JSONResponse(status_code=status_code, content=result.to_dict())


@app.get("/api/v1/gameweeks/{gameweek}/status")
async def gameweek_status(
    gameweek: int,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    status = await orchestrator.status_checker.check(gameweek)
    body = status.to_dict()
    body["missing_conditions"] = status.missing_conditions()
    return body


@app.get("/health")
def health():
    return {"status": "ok"}
