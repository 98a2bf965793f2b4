import asyncio
from decimal import Decimal

import pytest

from conftest import FakeFPLClient, InMemoryDB, make_config
from fpl_api.client import FPLAPIError
from refresh.finalization import ContestFinalizer, FinalizationRejection

GW = 8


class RecordingLedger:
    def __init__(self):
        self.credits = []

    async def credit_payouts(self, contest, payouts):
        self.credits.append((contest.id, [(p.entry_id, p.amount) for p in payouts]))


@pytest.fixture
def world():
    db = InMemoryDB()
    fpl = FakeFPLClient()
    db.add_contest("c1", GW, entry_fee="200", platform_fee_percentage="10", league_type="tri")
    for i in range(1, 11):
        db.add_entry(f"e{i}", "c1", 200 + i, joined_minutes=i, score_before_period=100)
        fpl.scores[(200 + i, GW)] = 100 - i * 5
    fpl.start_gameweek(GW, finished=True, bonus=True)
    ledger = RecordingLedger()
    finalizer = ContestFinalizer(fpl, db, make_config(), ledger=ledger)
    return db, fpl, ledger, finalizer


def finalize(finalizer, contest_id="c1"):
    return asyncio.run(finalizer.finalize(contest_id))


def test_finalize_settles_ranks_and_payouts(world):
    db, fpl, ledger, finalizer = world

    result = finalize(finalizer)

    assert result.success is True
    assert result.refinalized is False
    assert result.prize_pool == Decimal("1800")
    assert [(p.entry_id, p.amount) for p in result.payouts] == [
        ("e1", Decimal("900.00")),
        ("e2", Decimal("540.00")),
        ("e3", Decimal("360.00")),
    ]
    assert db.contests["c1"]["status"] == "completed"
    assert db.entry("e1")["rank"] == 1
    assert db.entry("e1")["payout"] == Decimal("900.00")
    assert db.entry("e1")["payout_status"] == "PAID_TO_WALLET"
    assert db.entry("e4")["payout"] == Decimal("0.00")
    assert db.entry("e4")["payout_status"] is None
    assert ledger.credits == [("c1", [
        ("e1", Decimal("900.00")), ("e2", Decimal("540.00")), ("e3", Decimal("360.00")),
    ])]


def test_final_sync_uses_fresh_scores(world):
    db, fpl, ledger, finalizer = world
    # stored standings are stale; upstream now has e10 on top
    fpl.scores[(210, GW)] = 200

    result = finalize(finalizer)

    assert result.payouts[0].entry_id == "e10"
    assert db.entry("e10")["period_score"] == 200
    assert db.entry("e10")["rank"] == 1


def test_refinalize_does_not_credit_twice(world):
    db, fpl, ledger, finalizer = world

    first = finalize(finalizer)
    second = finalize(finalizer)

    assert first.success and second.success
    assert second.refinalized is True
    assert second.payouts == first.payouts
    assert len(ledger.credits) == 1
    assert db.contests["c1"]["status"] == "completed"


def test_refinalize_keeps_settled_payouts_when_scores_change(world):
    db, fpl, ledger, finalizer = world
    finalize(finalizer)
    settled = {eid: row["payout"] for eid, row in db.entries.items()}
    payout_writes = db.payout_writes
    # upstream correction after settlement puts e10 on top
    fpl.scores[(210, GW)] = 500

    second = finalize(finalizer)

    assert second.success is True
    assert second.refinalized is True
    assert {eid: row["payout"] for eid, row in db.entries.items()} == settled
    assert db.payout_writes == payout_writes
    assert sorted(second.payout_drift) == ["e1", "e10", "e2", "e3"]
    assert {p.entry_id: p.amount for p in second.payouts} == {
        "e1": Decimal("900.00"), "e2": Decimal("540.00"), "e3": Decimal("360.00"),
    }
    assert db.entry("e10")["rank"] == 1
    assert len(ledger.credits) == 1
    assert second.to_dict()["payout_drift"] == second.payout_drift


def test_concurrent_finalize_credits_once(world):
    db, fpl, ledger, finalizer = world

    async def both():
        return await asyncio.gather(finalizer.finalize("c1"), finalizer.finalize("c1"))

    results = asyncio.run(both())

    assert all(r.success for r in results)
    assert sorted(r.refinalized for r in results) == [False, True]
    assert len(ledger.credits) == 1
    assert db.payout_writes == 1


def test_contest_locks_released_after_finalize(world):
    db, fpl, ledger, finalizer = world

    async def three():
        return await asyncio.gather(*(finalizer.finalize("c1") for _ in range(3)))

    asyncio.run(three())
    finalize(finalizer, "missing")

    assert finalizer._locks == {}
    assert len(ledger.credits) == 1


def test_rejects_unknown_contest(world):
    _, _, ledger, finalizer = world
    result = finalize(finalizer, "missing")
    assert result.success is False
    assert result.rejection == FinalizationRejection.CONTEST_NOT_FOUND
    assert ledger.credits == []


@pytest.mark.parametrize("status", ["upcoming", "cancelled"])
def test_rejects_contest_not_active(world, status):
    db, _, ledger, finalizer = world
    db.contests["c1"]["status"] = status
    result = finalize(finalizer)
    assert result.rejection == FinalizationRejection.INVALID_STATUS
    assert db.contests["c1"]["status"] == status
    assert db.payout_writes == 0


def test_rejects_when_fixtures_not_finished(world):
    db, fpl, ledger, finalizer = world
    fpl.fixtures[GW][0]["finished"] = False
    result = finalize(finalizer)
    assert result.rejection == FinalizationRejection.FIXTURES_NOT_FINISHED
    assert "fixtures not finished" in result.message
    assert db.contests["c1"]["status"] == "active"
    assert db.score_writes == 0


def test_rejects_when_bonus_not_confirmed(world):
    db, fpl, ledger, finalizer = world
    fpl.event_status[0]["bonus_added"] = False
    result = finalize(finalizer)
    assert result.rejection == FinalizationRejection.BONUS_NOT_CONFIRMED
    assert "bonus data not confirmed" in result.message
    assert db.contests["c1"]["status"] == "active"
    assert ledger.credits == []


def test_rejects_when_status_unavailable(world):
    db, fpl, ledger, finalizer = world
    fpl.event_status = FPLAPIError("event-status down")
    result = finalize(finalizer)
    assert result.rejection == FinalizationRejection.STATUS_UNAVAILABLE
    assert db.contests["c1"]["status"] == "active"


def test_rejects_invalid_prize_table(world):
    db, fpl, ledger, finalizer = world
    db.contests["c1"]["prize_distribution"] = [{"position": 1, "percentage_share": 70}]
    result = finalize(finalizer)
    assert result.rejection == FinalizationRejection.INVALID_PRIZE_TABLE
    assert db.contests["c1"]["status"] == "active"


def test_partial_final_sync_failure_still_settles(world):
    db, fpl, ledger, finalizer = world
    fpl.scores[(201, GW)] = FPLAPIError("timeout")

    result = finalize(finalizer)

    assert result.success is True
    assert result.failed_entries == [201]
    assert db.entry("e1")["period_score"] == 0
    assert result.payouts[0].entry_id == "e2"
    assert db.contests["c1"]["status"] == "completed"


def test_tie_on_paid_position_splits_share(world):
    db, fpl, ledger, finalizer = world
    fpl.scores[(201, GW)] = 95
    fpl.scores[(202, GW)] = 95

    result = finalize(finalizer)

    amounts = {p.entry_id: p.amount for p in result.payouts}
    # rank 1 shared, rank 2 unheld, rank 3 paid as normal
    assert amounts == {"e1": Decimal("450.00"), "e2": Decimal("450.00"), "e3": Decimal("360.00")}


def test_custom_prize_table_is_used(world):
    db, fpl, ledger, finalizer = world
    db.contests["c1"]["prize_distribution"] = [{"position": 1, "percentage_share": 100}]
    result = finalize(finalizer)
    assert [(p.entry_id, p.amount) for p in result.payouts] == [("e1", Decimal("1800.00"))]
