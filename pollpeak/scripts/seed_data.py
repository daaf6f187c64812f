"""
Seed script to populate sample profiles, polls and contests for local runs.

Run with: python -m pollpeak.scripts.seed_data
"""
import asyncio
import logging
from datetime import timedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.clock import utcnow
from pollpeak.core.logging_config import configure_logging
from pollpeak.crud.contest import crud_contest
from pollpeak.crud.poll import crud_poll
from pollpeak.crud.profile import crud_profile
from pollpeak.db.core import async_session_factory, init_db
from pollpeak.models import Contest, Poll, Profile, ProfileRole
from pollpeak.schemas.contest import ContestCreate, PayoutTier
from pollpeak.schemas.poll import PollCreate
from pollpeak.schemas.profile import ProfileCreate
from pollpeak.services.ledger import LedgerService

logger = logging.getLogger(__name__)

SAMPLE_PROFILES = [
    {"user_id": "admin", "role": ProfileRole.ADMIN, "opening_balance": 0},
    {"user_id": "alice", "role": ProfileRole.USER, "opening_balance": 500},
    {"user_id": "bob", "role": ProfileRole.USER, "opening_balance": 500},
    {"user_id": "carol", "role": ProfileRole.USER, "opening_balance": 250},
]

SAMPLE_POLLS = [
    {
        "question": "Which trivia category should we run next week?",
        "category": "trivia",
        "options": ["Science", "History", "Movies", "Sports"]
    },
    {
        "question": "Best time of day for a live contest?",
        "category": "community",
        "options": ["Morning", "Lunch break", "Evening", "Late night"]
    },
    {
        "question": "Should contests have a free entry tier?",
        "category": "community",
        "options": ["Yes", "No"]
    },
]


def sample_contests():
    now = utcnow()
    return [
        ContestCreate(
            title="Weekend Science Showdown",
            description="Twenty questions, ten minutes.",
            entry_fee=100,
            start_time=now + timedelta(hours=12),
            end_time=now + timedelta(hours=14),
            prize_pool_amount=1000,
            num_winners=3,
            payout_structure=[PayoutTier(rank=1, percentage=50),
                              PayoutTier(rank=2, percentage=30),
                              PayoutTier(rank=3, percentage=20)],
            created_by="admin",
        ),
        ContestCreate(
            title="Free History Sprint",
            entry_fee=0,
            start_time=now + timedelta(days=3),
            end_time=now + timedelta(days=3, hours=1),
            prize_pool_amount=300,
            num_winners=1,
            payout_structure=[PayoutTier(rank=1, percentage=100)],
            created_by="admin",
        ),
    ]


async def seed_data(session_factory: async_sessionmaker[AsyncSession] = None, ledger: LedgerService = None):
    """Seed the database with sample data, unless it already has polls."""
    session_factory = session_factory or async_session_factory
    ledger = ledger or LedgerService(session_factory)

    async with session_factory() as session:
        existing_polls = await session.execute(select(Poll).limit(1))
        if existing_polls.scalar_one_or_none():
            logger.info("data already exists, skipping seed")
            return

        for profile_data in SAMPLE_PROFILES:
            if await crud_profile.get_profile(session, profile_data["user_id"]) is None:
                await crud_profile.create_profile(session, ProfileCreate(**profile_data), ledger)
        for poll_data in SAMPLE_POLLS:
            await crud_poll.create_poll(session, PollCreate(created_by="admin", **poll_data))
        for contest_data in sample_contests():
            await crud_contest.create_contest(session, contest_data)

        profile_count = await session.scalar(select(func.count()).select_from(Profile))
        poll_count = await session.scalar(select(func.count()).select_from(Poll))
        contest_count = await session.scalar(select(func.count()).select_from(Contest))
        logger.info(
            f"seeding complete: {profile_count} profiles, {poll_count} polls, {contest_count} contests")


async def main():
    configure_logging()
    try:
        await init_db()
        await seed_data()
    except Exception as e:
        logger.error(f"error seeding data: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    asyncio.run(main())
