from datetime import datetime, timedelta, timezone
import pytest
from pollpeak.services.ranking import ScoreEntry, rank_entries

T0 = datetime(2025, 7, 12, 12, 0, tzinfo=timezone.utc)


def entry(user_id, score, minutes=0):
    return ScoreEntry(user_id=user_id, score=score, enrollment_time=T0 + timedelta(minutes=minutes))


def test_orders_by_score_descending():
    ranking = rank_entries([entry("a", 10), entry("b", 30), entry("c", 20)], num_winners=2)

    assert [(e.user_id, e.position, e.payout_rank) for e in ranking] == [
        ("b", 1, 1),
        ("c", 2, 2),
        ("a", 3, None),
    ]


def test_ties_go_to_earlier_enrollment_then_user_id():
    ranking = rank_entries([
        entry("late", 50, minutes=5),
        entry("early", 50, minutes=1),
        entry("zed", 50, minutes=0),
        entry("amy", 50, minutes=0),
    ], num_winners=3)

    assert [e.user_id for e in ranking] == ["amy", "zed", "early", "late"]
    assert [e.payout_rank for e in ranking] == [1, 2, 3, None]


def test_unscored_entries_are_listed_last_without_rank():
    ranking = rank_entries([entry("idle", None, minutes=0), entry("player", 1)], num_winners=3)

    assert [e.user_id for e in ranking] == ["player", "idle"]
    assert ranking[1].position is None
    assert ranking[1].payout_rank is None


def test_naive_and_aware_times_compare():
    naive = ScoreEntry(user_id="a", score=5, enrollment_time=datetime(2025, 7, 12, 12, 1))
    aware = entry("b", 5, minutes=0)

    assert [e.user_id for e in rank_entries([naive, aware], num_winners=1)] == ["b", "a"]


def test_empty_and_invalid():
    assert rank_entries([], num_winners=3) == []
    with pytest.raises(ValueError):
        rank_entries([entry("a", 1)], num_winners=0)
