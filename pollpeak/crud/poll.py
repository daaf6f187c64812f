from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from pollpeak.core.clock import as_utc
from pollpeak.models.poll import Poll, PollOption
from pollpeak.schemas.poll import OptionResponse, PollCreate, PollResponse


class CRUDPoll:
    async def get_poll_by_id(self, db: AsyncSession, poll_id: int) -> Poll | None:
        """Get a single poll with its options."""
        result = await db.execute(
            select(Poll)
            .options(selectinload(Poll.options))
            .where(Poll.id == poll_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_all_polls(self, db: AsyncSession) -> List[Poll]:
        result = await db.execute(
            select(Poll)
            .options(selectinload(Poll.options))
            .order_by(Poll.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_poll(self, db: AsyncSession, poll_data: PollCreate) -> Poll:
        """Create a new poll with its options, indexed in the order given."""
        poll = Poll(
            question=poll_data.question,
            category=poll_data.category,
            created_by=poll_data.created_by,
            is_active=poll_data.is_active,
            start_date=as_utc(poll_data.start_date),
            active_until=as_utc(poll_data.active_until),
        )
        db.add(poll)
        await db.flush()  # Get the poll ID

        for position, option_text in enumerate(poll_data.options):
            db.add(PollOption(poll_id=poll.id, position=position, text=option_text))

        await db.commit()
        return await self.get_poll_by_id(db, poll.id)

    def to_response(self, poll: Poll) -> PollResponse:
        return PollResponse(
            id=poll.id,
            question=poll.question,
            category=poll.category,
            is_active=poll.is_active,
            start_date=poll.start_date,
            active_until=poll.active_until,
            total_votes=poll.total_votes,
            options=[OptionResponse(index=opt.position, text=opt.text) for opt in poll.options],
            created_at=poll.created_at,
        )


crud_poll = CRUDPoll()
