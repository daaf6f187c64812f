from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.core.clock import as_utc
from pollpeak.models.contest import Contest, ContestStatus
from pollpeak.schemas.contest import ContestCreate
from pollpeak.services.disbursement import validate_payout_structure


class CRUDContest:
    async def get_contest(self, db: AsyncSession, contest_id: int) -> Contest | None:
        result = await db.execute(select(Contest).where(Contest.id == contest_id))
        return result.scalar_one_or_none()

    async def get_all_contests(self, db: AsyncSession) -> List[Contest]:
        result = await db.execute(select(Contest).order_by(Contest.start_time))
        return list(result.scalars().all())

    async def create_contest(self, db: AsyncSession, data: ContestCreate) -> Contest:
        """
        Create a contest in the upcoming phase. The payout structure is
        validated here; whether it covers every winner is only checked at
        disbursement.
        """
        structure = [tier.model_dump() for tier in data.payout_structure]
        validate_payout_structure(structure)
        contest = Contest(
            title=data.title,
            description=data.description,
            trivia_game_id=data.trivia_game_id,
            entry_fee=data.entry_fee,
            start_time=as_utc(data.start_time),
            end_time=as_utc(data.end_time),
            enrollment_opens_at=as_utc(data.enrollment_opens_at),
            status=ContestStatus.UPCOMING,
            prize_pool_amount=data.prize_pool_amount,
            prize_pool_currency=data.prize_pool_currency,
            num_winners=data.num_winners,
            payout_structure=structure,
            created_by=data.created_by,
        )
        db.add(contest)
        await db.commit()
        await db.refresh(contest)
        return contest


crud_contest = CRUDContest()
