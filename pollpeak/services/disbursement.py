from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional
from pollpeak.core.exceptions import IncompletePayoutStructure, InvalidPayoutStructure
from pollpeak.services.ranking import RankedEntry


@dataclass(frozen=True)
class PayoutLine:
    user_id: str
    rank: int
    amount: int
    enrollment_id: Optional[int] = None


def _tier_fields(tier) -> tuple:
    if isinstance(tier, dict):
        return tier.get("rank"), tier.get("percentage")
    return getattr(tier, "rank", None), getattr(tier, "percentage", None)


def validate_payout_structure(structure: Iterable) -> Dict[int, Decimal]:
    """
    Check a payout structure and return it as {rank: percentage}.

    Ranks must be unique positive integers, percentages non-negative and
    summing to at most 100.
    """
    percentages: Dict[int, Decimal] = {}
    for tier in structure:
        rank, percentage = _tier_fields(tier)
        if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
            raise InvalidPayoutStructure(f"rank {rank!r} must be a positive integer")
        if rank in percentages:
            raise InvalidPayoutStructure(f"rank {rank} is defined more than once")
        if percentage is None or isinstance(percentage, bool):
            raise InvalidPayoutStructure(f"rank {rank} has no percentage")
        # str() keeps 33.3 as 33.3 instead of its binary float expansion
        value = Decimal(str(percentage))
        if value < 0:
            raise InvalidPayoutStructure(f"rank {rank} has a negative percentage")
        percentages[rank] = value
    total = sum(percentages.values(), Decimal(0))
    if total > 100:
        raise InvalidPayoutStructure(f"percentages sum to {total}, above 100")
    return percentages


def check_covers_winners(percentages: Dict[int, Decimal], num_winners: int) -> None:
    missing = [rank for rank in range(1, num_winners + 1) if rank not in percentages]
    if missing:
        raise IncompletePayoutStructure(num_winners, percentages.keys())


def compute_payouts(ranking: List[RankedEntry], prize_pool_amount: int, payout_structure: Iterable, num_winners: int) -> List[PayoutLine]:
    """
    Split the prize pool between the ranked winners.

    Every rank 1..num_winners must have a percentage. Each winner gets
    floor(pool * percentage / 100); whatever the flooring leaves over stays in
    the pool. Ranks with nobody in them (fewer scored players than winners)
    pay nothing.
    """
    if prize_pool_amount < 0:
        raise ValueError("prize_pool_amount must not be negative")
    percentages = validate_payout_structure(payout_structure)
    check_covers_winners(percentages, num_winners)

    pool = Decimal(prize_pool_amount)
    lines = []
    for entry in ranking:
        if entry.payout_rank is None or entry.payout_rank > num_winners:
            continue
        percentage = percentages[entry.payout_rank]
        amount = int((pool * percentage / 100).to_integral_value(rounding=ROUND_FLOOR))
        lines.append(PayoutLine(
            user_id=entry.user_id,
            rank=entry.payout_rank,
            amount=amount,
            enrollment_id=entry.enrollment_id,
        ))
    return lines
