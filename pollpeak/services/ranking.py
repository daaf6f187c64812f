from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional
from pollpeak.core.clock import as_utc


@dataclass(frozen=True)
class ScoreEntry:
    user_id: str
    score: Optional[float]
    enrollment_time: datetime
    enrollment_id: Optional[int] = None


@dataclass(frozen=True)
class RankedEntry:
    user_id: str
    score: Optional[float]
    enrollment_time: datetime
    enrollment_id: Optional[int]
    # 1..n over scored entries, None for entries without a final score
    position: Optional[int]
    # set only for the top num_winners positions
    payout_rank: Optional[int]


def rank_entries(entries: Iterable[ScoreEntry], num_winners: int) -> List[RankedEntry]:
    """
    Order entries for payout.

    Scored entries come first, by score descending, then earlier enrollment,
    then user id so that the order is total. Entries that never submitted a
    score follow in enrollment order and carry neither a position nor a
    payout rank.
    """
    if num_winners < 1:
        raise ValueError("num_winners must be positive")
    entries = list(entries)
    scored = sorted(
        (e for e in entries if e.score is not None),
        key=lambda e: (-e.score, as_utc(e.enrollment_time), e.user_id))
    unscored = sorted(
        (e for e in entries if e.score is None),
        key=lambda e: (as_utc(e.enrollment_time), e.user_id))

    ranking = []
    for position, entry in enumerate(scored, start=1):
        ranking.append(RankedEntry(
            user_id=entry.user_id,
            score=entry.score,
            enrollment_time=entry.enrollment_time,
            enrollment_id=entry.enrollment_id,
            position=position,
            payout_rank=position if position <= num_winners else None,
        ))
    for entry in unscored:
        ranking.append(RankedEntry(
            user_id=entry.user_id,
            score=None,
            enrollment_time=entry.enrollment_time,
            enrollment_id=entry.enrollment_id,
            position=None,
            payout_rank=None,
        ))
    return ranking
