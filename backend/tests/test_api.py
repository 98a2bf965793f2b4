import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeFPLClient, InMemoryDB, make_config
from api.main import app, get_config, get_orchestrator
from refresh.orchestrator import RefreshOrchestrator

GW = 12


@pytest.fixture
def api():
    db = InMemoryDB()
    fpl = FakeFPLClient()
    db.add_contest("c1", GW, entry_fee="100", league_type="jackpot")
    db.add_contest("c2", GW, status="upcoming")
    db.add_entry("e1", "c1", 1)
    db.add_entry("e2", "c1", 2)
    fpl.start_gameweek(GW, finished=True, bonus=True)
    fpl.scores[(1, GW)] = 61
    fpl.scores[(2, GW)] = 48

    config = make_config(cron_secret="s3cret")
    orchestrator = RefreshOrchestrator(config, fpl_client=fpl, db_client=db)
    asyncio.run(orchestrator.initialize())

    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        yield TestClient(app), db, fpl
    finally:
        app.dependency_overrides.clear()


def test_update_leaderboards_requires_bearer_secret(api):
    client, db, _ = api
    assert client.post("/api/v1/cron/update-leaderboards").status_code == 401
    response = client.post(
        "/api/v1/cron/update-leaderboards",
        headers={"Authorization": "Bearer wrong"},
    )
    assert response.status_code == 401
    assert db.entry("e1")["period_score"] == 0


def test_update_leaderboards_runs_a_pass(api):
    client, db, _ = api
    response = client.post(
        "/api/v1/cron/update-leaderboards",
        headers={"Authorization": "Bearer s3cret"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["activated_count"] == 1
    assert body["processed_count"] == 2
    assert body["entries_updated"] == 2
    assert body["errors"] == []
    assert db.entry("e1")["rank"] == 1


def test_finalize_success(api):
    client, db, _ = api
    response = client.post("/api/v1/contests/c1/finalize")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["prize_pool"] == "180"
    assert body["payouts"] == [{"entry_id": "e1", "team_id": 1, "rank": 1, "amount": "180.00"}]
    assert db.contests["c1"]["status"] == "completed"


def test_finalize_unknown_contest_is_404(api):
    client, _, _ = api
    response = client.post("/api/v1/contests/nope/finalize")
    assert response.status_code == 404
    assert response.json()["rejection"] == "contest_not_found"


def test_finalize_rejection_is_400_with_reason(api):
    client, db, fpl = api
    fpl.event_status[0]["bonus_added"] = False
    response = client.post("/api/v1/contests/c1/finalize")
    assert response.status_code == 400
    body = response.json()
    assert body["rejection"] == "bonus_not_confirmed"
    assert "bonus data not confirmed" in body["message"]
    assert db.contests["c1"]["status"] == "active"


def test_gameweek_status(api):
    client, _, fpl = api
    fpl.fixtures[GW][0]["finished"] = False
    response = client.get(f"/api/v1/gameweeks/{GW}/status")
    assert response.status_code == 200
    body = response.json()
    assert body["has_started"] is True
    assert body["is_strictly_complete"] is False
    assert body["missing_conditions"] == ["fixtures not finished"]


def test_health(api):
    client, _, _ = api
    assert client.get("/health").json() == {"status": "ok"}
