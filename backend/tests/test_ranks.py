from datetime import timedelta

from conftest import NOW, InMemoryDB
from leagues.models import LeagueEntry
from refresh.ranks import LeagueRankCalculator, assign_ranks


def entry(entry_id, period_score, joined_minutes=0, joined=True):
    return LeagueEntry(
        id=entry_id,
        contest_id="c1",
        team_id=int(entry_id[1:]),
        joined_at=NOW + timedelta(minutes=joined_minutes) if joined else None,
        period_score=period_score,
    )


def test_competition_ranking_with_ties():
    entries = [
        entry("e1", 10), entry("e2", 50), entry("e3", 30), entry("e4", 50), entry("e5", 10),
    ]
    ranked = assign_ranks(entries)
    assert [rank for _, rank in ranked] == [1, 1, 3, 4, 4]
    assert [e.period_score for e, _ in ranked] == [50, 50, 30, 10, 10]


def test_equal_scores_ordered_by_join_time_then_id():
    entries = [
        entry("e3", 20, joined_minutes=5),
        entry("e1", 20, joined_minutes=5),
        entry("e2", 20, joined_minutes=1),
        entry("e9", 20, joined=False),
    ]
    ranked = assign_ranks(entries)
    assert [e.id for e, _ in ranked] == ["e2", "e1", "e3", "e9"]
    assert {rank for _, rank in ranked} == {1}


def test_negative_scores_rank_last():
    ranked = assign_ranks([entry("e1", -4), entry("e2", 0), entry("e3", 3)])
    assert [(e.id, r) for e, r in ranked] == [("e3", 1), ("e2", 2), ("e1", 3)]


def test_assignment_is_deterministic_regardless_of_input_order():
    entries = [entry("e%d" % i, score, joined_minutes=i) for i, score in enumerate([7, 3, 7, 1, 3], 1)]
    forward = [(e.id, r) for e, r in assign_ranks(entries)]
    backward = [(e.id, r) for e, r in assign_ranks(list(reversed(entries)))]
    assert forward == backward


def test_recalculate_contest_ranks_persists_and_is_idempotent():
    db = InMemoryDB()
    db.add_contest("c1", 5)
    for i, score in enumerate([50, 50, 30, 10, 10], 1):
        db.add_entry(f"e{i}", "c1", 100 + i, joined_minutes=i, period_score=score)

    calculator = LeagueRankCalculator(db)
    assert calculator.recalculate_contest_ranks("c1") == 5
    first = {eid: row["rank"] for eid, row in db.entries.items()}
    assert first == {"e1": 1, "e2": 1, "e3": 3, "e4": 4, "e5": 4}

    calculator.recalculate_contest_ranks("c1")
    assert {eid: row["rank"] for eid, row in db.entries.items()} == first


def test_empty_contest_ranks_nothing():
    db = InMemoryDB()
    db.add_contest("c1", 5)
    assert LeagueRankCalculator(db).recalculate_contest_ranks("c1") == 0
