import logging
import uuid
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.clock import Clock, as_utc, utcnow
from pollpeak.core.config import settings
from pollpeak.core.exceptions import AlreadyVoted, InvalidOption, PollClosed, PollNotFound, ProfileNotFound
from pollpeak.db.transaction import run_in_transaction
from pollpeak.models import PendingReward, Poll, PollOption, Profile, RewardStatus, TransactionKind, VoteLog
from pollpeak.services.ledger import LedgerService
from pollpeak.services.notifier import VOTE_CAST, Event, Notifier

logger = logging.getLogger(__name__)


def upsert_for(session: AsyncSession):
    """Dialect specific insert that supports ON CONFLICT."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def percentage_of(votes: int, total: int) -> float:
    return round(votes / total * 100, 1) if total > 0 else 0.0


class VoteAggregator:
    def __init__(self,
                 session_factory: async_sessionmaker[AsyncSession],
                 ledger: LedgerService,
                 notifier: Notifier,
                 clock: Clock = utcnow,
                 reward_points: int = None,
                 reward_max_retries: int = None):
        self.session_factory = session_factory
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self.reward_points = settings.VOTE_REWARD_POINTS if reward_points is None else reward_points
        self.reward_max_retries = reward_max_retries or settings.REWARD_MAX_RETRIES

    def _check_open(self, poll: Poll):
        if not poll.is_active:
            raise PollClosed(poll.id, "Poll is not active")
        now = self.clock()
        start_date = as_utc(poll.start_date)
        active_until = as_utc(poll.active_until)
        if start_date is not None and now < start_date:
            raise PollClosed(poll.id, "Poll has not started yet")
        if active_until is not None and now > active_until:
            raise PollClosed(poll.id, "Poll has ended")

    async def _read_tally(self, session: AsyncSession, poll_id: int) -> Optional[dict]:
        # column selects, not ORM entities, so the counters are read fresh from the database
        poll_row = (await session.execute(
            select(Poll.id, Poll.question, Poll.total_votes).where(Poll.id == poll_id))).one_or_none()
        if poll_row is None:
            return None
        option_rows = (await session.execute(
            select(PollOption.position, PollOption.text, PollOption.votes)
            .where(PollOption.poll_id == poll_id)
            .order_by(PollOption.position))).all()
        total = poll_row.total_votes
        return {
            "poll_id": poll_row.id,
            "question": poll_row.question,
            "total_votes": total,
            "options": [
                {
                    "index": row.position,
                    "text": row.text,
                    "votes": row.votes,
                    "percentage": percentage_of(row.votes, total),
                }
                for row in option_rows
            ],
        }

    async def cast_vote(self, poll_id: int, user_id: str, option_index: int) -> dict:
        """
        Record a user's single vote on a poll and reward the voter.

        The vote row, both tally increments and the pending reward are one
        transaction. The reward is then settled in its own transaction; if
        that keeps failing the vote still stands and the pending reward is
        left for the reconciliation worker.
        """
        async def record(session: AsyncSession):
            poll = await session.scalar(select(Poll).where(Poll.id == poll_id))
            if poll is None:
                raise PollNotFound(poll_id)
            self._check_open(poll)
            option_id = await session.scalar(
                select(PollOption.id).where(PollOption.poll_id == poll_id, PollOption.position == option_index))
            if option_id is None:
                total_options = len((await session.scalars(
                    select(PollOption.id).where(PollOption.poll_id == poll_id))).all())
                raise InvalidOption(option_index, total_options)
            voter = await session.scalar(select(Profile.user_id).where(Profile.user_id == user_id))
            if voter is None:
                raise ProfileNotFound(user_id)

            insert = upsert_for(session)
            result = await session.execute(
                insert(VoteLog)
                .values(poll_id=poll_id, user_id=user_id, option_index=option_index)
                .on_conflict_do_nothing(index_elements=["poll_id", "user_id"])
                .returning(VoteLog.vote_id))
            vote_id = result.scalar_one_or_none()
            if vote_id is None:
                raise AlreadyVoted(poll_id, user_id)

            await session.execute(
                update(PollOption)
                .where(PollOption.poll_id == poll_id, PollOption.position == option_index)
                .values(votes=PollOption.votes + 1)
                .execution_options(synchronize_session=False))
            await session.execute(
                update(Poll)
                .where(Poll.id == poll_id)
                .values(total_votes=Poll.total_votes + 1)
                .execution_options(synchronize_session=False))

            pending_id = None
            if self.reward_points > 0:
                pending = PendingReward(
                    vote_id=vote_id,
                    user_id=user_id,
                    poll_id=poll_id,
                    amount=self.reward_points,
                    status=RewardStatus.PENDING,
                )
                session.add(pending)
                await session.flush()
                pending_id = pending.id
            tally = await self._read_tally(session, poll_id)
            return vote_id, pending_id, tally

        vote_id, pending_id, tally = await run_in_transaction(self.session_factory, record)
        logger.info(f"vote {vote_id} recorded: poll {poll_id}, user {user_id}, option {option_index}")

        points_awarded = 0
        if pending_id is not None:
            points_awarded = await self._settle_with_retry(pending_id, vote_id)

        await self.notifier.publish(Event(
            type=VOTE_CAST,
            topic="poll",
            entity_id=poll_id,
            payload={"total_votes": tally["total_votes"], "options": tally["options"]},
        ))
        return {
            "poll_id": poll_id,
            "total_votes": tally["total_votes"],
            "options": tally["options"],
            "points_awarded": points_awarded,
        }

    async def settle_reward(self, pending_id: uuid.UUID) -> int:
        """
        Credit a pending vote reward. Returns the credited amount, or 0 when the
        reward was already settled.
        """
        async def work(session: AsyncSession):
            result = await session.execute(
                update(PendingReward)
                .where(PendingReward.id == pending_id, PendingReward.status == RewardStatus.PENDING)
                .values(status=RewardStatus.SETTLED,
                        settled_at=self.clock(),
                        attempts=PendingReward.attempts + 1,
                        last_error=None)
                .returning(PendingReward.user_id, PendingReward.poll_id, PendingReward.amount)
                .execution_options(synchronize_session=False))
            row = result.one_or_none()
            if row is None:
                return 0
            await self.ledger.apply_credit(
                session, row.user_id, row.amount, TransactionKind.VOTE_REWARD, row.poll_id)
            return row.amount
        return await run_in_transaction(self.session_factory, work)

    async def _settle_with_retry(self, pending_id: uuid.UUID, vote_id: int) -> int:
        last_error = None
        for attempt in range(1, self.reward_max_retries + 1):
            try:
                return await self.settle_reward(pending_id)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"reward settlement attempt {attempt}/{self.reward_max_retries} failed for vote {vote_id}: {e}")
        logger.error(
            f"reward for vote {vote_id} (pending {pending_id}) left unsettled for reconciliation: {last_error}",
            exc_info=last_error)
        await self._record_failure(pending_id, last_error)
        return 0

    async def _record_failure(self, pending_id: uuid.UUID, error: Exception):
        async def work(session: AsyncSession):
            await session.execute(
                update(PendingReward)
                .where(PendingReward.id == pending_id, PendingReward.status == RewardStatus.PENDING)
                .values(attempts=PendingReward.attempts + 1, last_error=str(error)[:1000])
                .execution_options(synchronize_session=False))
        try:
            await run_in_transaction(self.session_factory, work)
        except Exception as e:
            logger.error(f"could not record failure on pending reward {pending_id}: {e}", exc_info=True)

    async def reconcile_pending_rewards(self, limit: int = 100) -> int:
        """Settle rewards left pending by failed settlements. Returns the number settled."""
        async with self.session_factory() as session:
            pending_ids = (await session.scalars(
                select(PendingReward.id)
                .where(PendingReward.status == RewardStatus.PENDING)
                .order_by(PendingReward.created_at)
                .limit(limit))).all()
        settled = 0
        for pending_id in pending_ids:
            try:
                if await self.settle_reward(pending_id) > 0:
                    settled += 1
            except Exception as e:
                logger.error(f"reconciliation of pending reward {pending_id} failed: {e}", exc_info=True)
                await self._record_failure(pending_id, e)
        if settled:
            logger.info(f"reconciled {settled} pending vote rewards")
        return settled

    async def get_tally(self, poll_id: int) -> dict:
        async with self.session_factory() as session:
            tally = await self._read_tally(session, poll_id)
        if tally is None:
            raise PollNotFound(poll_id)
        return tally

    async def has_voted(self, poll_id: int, user_id: str) -> bool:
        async with self.session_factory() as session:
            exists = await session.scalar(select(Poll.id).where(Poll.id == poll_id))
            if exists is None:
                raise PollNotFound(poll_id)
            vote_id = await session.scalar(
                select(VoteLog.vote_id).where(VoteLog.poll_id == poll_id, VoteLog.user_id == user_id))
        return vote_id is not None
