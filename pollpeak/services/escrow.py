import logging
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.exceptions import AlreadyEnrolled, InvalidContestState, ProfileNotFound
from pollpeak.db.transaction import run_in_transaction
from pollpeak.models import Contest, ContestEnrollment, ContestStatus, PaymentStatus, Profile, TransactionKind
from pollpeak.services.contest_lifecycle import ContestLifecycleManager
from pollpeak.services.ledger import LedgerService
from pollpeak.services.notifier import ENROLLMENT_CREATED, Event, Notifier

logger = logging.getLogger(__name__)


class EntryEscrow:
    """Takes entry fees into a contest's escrow as users enroll."""

    def __init__(self,
                 session_factory: async_sessionmaker[AsyncSession],
                 ledger: LedgerService,
                 lifecycle: ContestLifecycleManager,
                 notifier: Notifier):
        self.session_factory = session_factory
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.notifier = notifier

    async def enroll(self, contest_id: int, user_id: str) -> int:
        """
        Enroll a user and hold the entry fee. Returns the enrollment id.

        The escrow increment is a conditional UPDATE on status = 'enrolling';
        it locks the contest row until commit, so no phase change can
        interleave and enrollments into the same contest run one at a time.
        """
        await self.lifecycle.sync_phase(contest_id)

        async def work(session: AsyncSession):
            contest = await self.lifecycle.load_contest(session, contest_id)
            await self.lifecycle.apply_due_transitions(session, contest)
            if contest.status != ContestStatus.ENROLLING:
                raise InvalidContestState(contest_id, contest.status, ContestStatus.ENROLLING)
            profile = await session.scalar(select(Profile.user_id).where(Profile.user_id == user_id))
            if profile is None:
                raise ProfileNotFound(user_id)

            held = (await session.execute(
                update(Contest)
                .where(Contest.id == contest_id, Contest.status == ContestStatus.ENROLLING)
                .values(escrow_balance=Contest.escrow_balance + Contest.entry_fee,
                        fees_collected=Contest.fees_collected + Contest.entry_fee)
                .returning(Contest.entry_fee, Contest.escrow_balance)
                .execution_options(synchronize_session=False))).one_or_none()
            if held is None:
                raise InvalidContestState(
                    contest_id, await self.lifecycle.current_status(session, contest), ContestStatus.ENROLLING)
            fee = held.entry_fee

            enrollment = ContestEnrollment(
                contest_id=contest_id,
                user_id=user_id,
                enrollment_time=self.lifecycle.clock(),
                fee_paid=fee,
                payment_status=PaymentStatus.PAID,
            )
            session.add(enrollment)
            try:
                await session.flush()
            except IntegrityError:
                raise AlreadyEnrolled(contest_id, user_id)

            if fee > 0:
                await self.ledger.apply_debit(session, user_id, fee, TransactionKind.ENTRY_FEE, contest_id)
            return enrollment.id, fee, held.escrow_balance

        enrollment_id, fee, escrow_balance = await run_in_transaction(self.session_factory, work)
        logger.info(f"user {user_id} enrolled in contest {contest_id} (enrollment {enrollment_id}, fee {fee})")
        await self.notifier.publish(Event(
            type=ENROLLMENT_CREATED,
            topic="contest",
            entity_id=contest_id,
            payload={"enrollment_id": enrollment_id, "user_id": user_id,
                     "fee_paid": fee, "escrow_balance": escrow_balance},
        ))
        return enrollment_id
