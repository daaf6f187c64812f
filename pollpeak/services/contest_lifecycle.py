import logging
import math
from datetime import datetime, timedelta
from typing import List, Tuple
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value
from pollpeak.core.clock import Clock, as_utc, utcnow
from pollpeak.core.config import settings
from pollpeak.core.exceptions import (AlreadyDisbursed, ContestNotFound, InvalidContestState, NotEnrolled,
                                      ScoreAlreadySubmitted)
from pollpeak.db.transaction import run_in_transaction
from pollpeak.models import Contest, ContestEnrollment, ContestStatus, PaymentStatus, Payout, TransactionKind
from pollpeak.services.disbursement import compute_payouts
from pollpeak.services.ledger import LedgerService
from pollpeak.services.notifier import (CONTEST_CANCELLED, CONTEST_DISBURSED, CONTEST_PHASE_CHANGED, SCORE_SUBMITTED,
                                        Event, Notifier)
from pollpeak.services.ranking import RankedEntry, ScoreEntry, rank_entries

logger = logging.getLogger(__name__)

# time driven part of the lifecycle, in order
TIMED_PHASES = [ContestStatus.UPCOMING, ContestStatus.ENROLLING, ContestStatus.ACTIVE, ContestStatus.ENDED]
NEXT_PHASE = {
    ContestStatus.UPCOMING: ContestStatus.ENROLLING,
    ContestStatus.ENROLLING: ContestStatus.ACTIVE,
    ContestStatus.ACTIVE: ContestStatus.ENDED,
}
PREVIOUS_PHASE = {target: source for source, target in NEXT_PHASE.items()}
CANCELLABLE = (ContestStatus.UPCOMING, ContestStatus.ENROLLING, ContestStatus.ACTIVE)

Transition = Tuple[ContestStatus, ContestStatus]


def enrollment_opens_at(contest: Contest, lead_hours: int) -> datetime:
    opens_at = as_utc(contest.enrollment_opens_at)
    if opens_at is not None:
        return opens_at
    return as_utc(contest.start_time) - timedelta(hours=lead_hours)


def due_phase(contest: Contest, now: datetime, lead_hours: int) -> ContestStatus:
    """
    The phase the contest clock calls for. Never earlier than the current
    phase, since an admin may have advanced the contest ahead of its schedule.
    """
    if contest.status not in NEXT_PHASE:
        return contest.status
    if now >= as_utc(contest.end_time):
        target = ContestStatus.ENDED
    elif now >= as_utc(contest.start_time):
        target = ContestStatus.ACTIVE
    elif now >= enrollment_opens_at(contest, lead_hours):
        target = ContestStatus.ENROLLING
    else:
        target = ContestStatus.UPCOMING
    if TIMED_PHASES.index(target) > TIMED_PHASES.index(contest.status):
        return target
    return contest.status


def entries_for_ranking(enrollments: List[ContestEnrollment]) -> List[ScoreEntry]:
    return [
        ScoreEntry(
            user_id=e.user_id,
            score=e.score if e.has_played else None,
            enrollment_time=e.enrollment_time,
            enrollment_id=e.id,
        )
        for e in enrollments
    ]


class ContestLifecycleManager:
    """
    Owns contest phase changes.

    upcoming -> enrolling -> active -> ended -> disbursed, with cancelled
    reachable from the first three. Every change is a conditional UPDATE on
    the current phase, so two writers can never both apply the same
    transition.
    """

    def __init__(self,
                 session_factory: async_sessionmaker[AsyncSession],
                 ledger: LedgerService,
                 notifier: Notifier,
                 clock: Clock = utcnow,
                 lead_hours: int = None):
        self.session_factory = session_factory
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self.lead_hours = settings.ENROLLMENT_LEAD_HOURS if lead_hours is None else lead_hours

    async def load_contest(self, session: AsyncSession, contest_id: int, lock: bool = False) -> Contest:
        stmt = select(Contest).where(Contest.id == contest_id)
        if lock:
            stmt = stmt.with_for_update()
        contest = await session.scalar(stmt)
        if contest is None:
            raise ContestNotFound(contest_id)
        return contest

    async def transition(self, session: AsyncSession, contest: Contest, source: ContestStatus, target: ContestStatus) -> bool:
        result = await session.execute(
            update(Contest)
            .where(Contest.id == contest.id, Contest.status == source)
            .values(status=target)
            .execution_options(synchronize_session=False))
        if result.rowcount != 1:
            return False
        set_committed_value(contest, "status", target)
        return True

    async def current_status(self, session: AsyncSession, contest: Contest) -> ContestStatus:
        status = await session.scalar(select(Contest.status).where(Contest.id == contest.id))
        set_committed_value(contest, "status", status)
        return status

    async def apply_due_transitions(self, session: AsyncSession, contest: Contest) -> List[Transition]:
        """Move the contest through every phase its clock has passed, one step at a time."""
        applied = []
        now = self.clock()
        while contest.status in NEXT_PHASE and due_phase(contest, now, self.lead_hours) != contest.status:
            source = contest.status
            target = NEXT_PHASE[source]
            if await self.transition(session, contest, source, target):
                applied.append((source, target))
            else:
                # another writer moved it first, continue from where it is now
                await self.current_status(session, contest)
        return applied

    async def _publish_transitions(self, contest_id: int, transitions: List[Transition]):
        for source, target in transitions:
            logger.info(f"contest {contest_id} moved {source.value} -> {target.value}")
            await self.notifier.publish(Event(
                type=CONTEST_PHASE_CHANGED,
                topic="contest",
                entity_id=contest_id,
                payload={"from": source.value, "to": target.value},
            ))

    async def _sync(self, contest_id: int) -> Tuple[Contest, List[Transition]]:
        async def work(session: AsyncSession):
            contest = await self.load_contest(session, contest_id)
            transitions = await self.apply_due_transitions(session, contest)
            return contest, transitions

        contest, transitions = await run_in_transaction(self.session_factory, work)
        await self._publish_transitions(contest_id, transitions)
        return contest, transitions

    async def sync_phase(self, contest_id: int) -> Contest:
        contest, _ = await self._sync(contest_id)
        return contest

    async def get_contest(self, contest_id: int) -> Contest:
        return await self.sync_phase(contest_id)

    async def sync_due_contests(self) -> int:
        """Apply due time driven transitions to every live contest. Returns the number of transitions."""
        async with self.session_factory() as session:
            contest_ids = (await session.scalars(
                select(Contest.id).where(Contest.status.in_(list(NEXT_PHASE))))).all()
        moved = 0
        for contest_id in contest_ids:
            try:
                _, transitions = await self._sync(contest_id)
            except Exception as e:
                logger.error(f"failed to sync contest {contest_id}: {e}", exc_info=True)
                continue
            moved += len(transitions)
        return moved

    async def advance_phase(self, contest_id: int, target: ContestStatus) -> Contest:
        """Move a contest to the next phase ahead of its schedule."""
        target = ContestStatus(target)
        if target not in PREVIOUS_PHASE:
            raise ValueError(
                f"{target.value} is not reachable through advance_phase, use the dedicated operation")

        async def work(session: AsyncSession):
            contest = await self.load_contest(session, contest_id, lock=True)
            transitions = await self.apply_due_transitions(session, contest)
            required = PREVIOUS_PHASE[target]
            if contest.status != required:
                raise InvalidContestState(contest_id, contest.status, required)
            if not await self.transition(session, contest, required, target):
                raise InvalidContestState(contest_id, await self.current_status(session, contest), required)
            transitions.append((required, target))
            return contest, transitions

        contest, transitions = await run_in_transaction(self.session_factory, work)
        await self._publish_transitions(contest_id, transitions)
        return contest

    async def submit_score(self, contest_id: int, user_id: str, score: float) -> dict:
        if score is None or not math.isfinite(score) or score < 0:
            raise ValueError("score must be a finite non-negative number")
        await self.sync_phase(contest_id)

        async def work(session: AsyncSession):
            # the row lock keeps the phase from leaving active before the score commits
            contest = await self.load_contest(session, contest_id, lock=True)
            await self.apply_due_transitions(session, contest)
            if contest.status != ContestStatus.ACTIVE:
                raise InvalidContestState(contest_id, contest.status, ContestStatus.ACTIVE)
            result = await session.execute(
                update(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id,
                       ContestEnrollment.user_id == user_id,
                       ContestEnrollment.payment_status == PaymentStatus.PAID,
                       ContestEnrollment.has_played.is_(False))
                .values(has_played=True, score=score)
                .execution_options(synchronize_session=False))
            if result.rowcount == 1:
                return
            enrollment = await session.scalar(
                select(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id, ContestEnrollment.user_id == user_id))
            if enrollment is None or enrollment.payment_status != PaymentStatus.PAID:
                raise NotEnrolled(contest_id, user_id)
            raise ScoreAlreadySubmitted(contest_id, user_id)

        await run_in_transaction(self.session_factory, work)
        logger.info(f"score {score} submitted by {user_id} for contest {contest_id}")
        await self.notifier.publish(Event(
            type=SCORE_SUBMITTED,
            topic="contest",
            entity_id=contest_id,
            payload={"user_id": user_id, "score": score},
        ))
        return {"contest_id": contest_id, "user_id": user_id, "score": score}

    async def play_status(self, contest_id: int, user_id: str) -> dict:
        contest = await self.sync_phase(contest_id)
        async with self.session_factory() as session:
            enrollment = await session.scalar(
                select(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id, ContestEnrollment.user_id == user_id))
        if enrollment is None:
            return {"can_play": False, "message": "Not enrolled in this contest"}
        if enrollment.payment_status != PaymentStatus.PAID:
            return {"can_play": False, "message": "Payment not completed"}
        if enrollment.has_played:
            return {"can_play": False, "message": "Already completed this contest"}
        if contest.status == ContestStatus.ACTIVE:
            return {"can_play": True, "message": "Ready to play"}
        if contest.status in (ContestStatus.UPCOMING, ContestStatus.ENROLLING):
            return {"can_play": False, "message": "Contest has not started yet"}
        if contest.status == ContestStatus.ENDED:
            return {"can_play": False, "message": "Contest has ended"}
        return {"can_play": False, "message": "Contest is not available for play"}

    async def leaderboard(self, contest_id: int) -> List[dict]:
        contest = await self.sync_phase(contest_id)
        async with self.session_factory() as session:
            enrollments = (await session.scalars(
                select(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id,
                       ContestEnrollment.payment_status == PaymentStatus.PAID))).all()
        prizes = {e.user_id: e.prize_awarded for e in enrollments}
        ranking = rank_entries(entries_for_ranking(enrollments), contest.num_winners)
        return [
            {
                "position": entry.position,
                "payout_rank": entry.payout_rank,
                "user_id": entry.user_id,
                "score": entry.score,
                "prize_awarded": prizes.get(entry.user_id, 0),
            }
            for entry in ranking
        ]

    async def disburse(self, contest_id: int) -> dict:
        """
        Pay the prize pool out to the ranked winners, exactly once.

        The phase change, the payout rows, the ledger credits and the
        enrollment ranks are written in one transaction under a row lock on
        the contest. Any failure leaves the contest ended so it can be retried.
        """
        # commit due phase changes on their own so a failed payout leaves the contest ended
        await self.sync_phase(contest_id)

        async def work(session: AsyncSession):
            contest = await self.load_contest(session, contest_id, lock=True)
            transitions = await self.apply_due_transitions(session, contest)
            if contest.status == ContestStatus.DISBURSED:
                raise AlreadyDisbursed(contest_id)
            if contest.status != ContestStatus.ENDED:
                raise InvalidContestState(contest_id, contest.status, ContestStatus.ENDED)

            enrollments = (await session.scalars(
                select(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id,
                       ContestEnrollment.payment_status == PaymentStatus.PAID))).all()
            ranking = rank_entries(entries_for_ranking(enrollments), contest.num_winners)
            lines = compute_payouts(
                ranking, contest.prize_pool_amount, contest.payout_structure, contest.num_winners)

            if not await self.transition(session, contest, ContestStatus.ENDED, ContestStatus.DISBURSED):
                if await self.current_status(session, contest) == ContestStatus.DISBURSED:
                    raise AlreadyDisbursed(contest_id)
                raise InvalidContestState(contest_id, contest.status, ContestStatus.ENDED)

            by_enrollment = {e.id: e for e in enrollments}
            self._record_ranks(ranking, by_enrollment)
            for line in lines:
                session.add(Payout(
                    contest_id=contest_id,
                    user_id=line.user_id,
                    rank=line.rank,
                    amount=line.amount,
                    currency=contest.prize_pool_currency,
                ))
                by_enrollment[line.enrollment_id].prize_awarded = line.amount
                if line.amount > 0:
                    await self.ledger.apply_credit(
                        session, line.user_id, line.amount, TransactionKind.PRIZE_PAYOUT, contest_id)
            contest.escrow_balance = 0
            await session.flush()
            return contest, transitions, lines

        contest, transitions, lines = await run_in_transaction(self.session_factory, work)
        await self._publish_transitions(contest_id, transitions)

        total_paid = sum(line.amount for line in lines)
        payouts = [{"user_id": line.user_id, "rank": line.rank, "amount": line.amount} for line in lines]
        logger.info(
            f"contest {contest_id} disbursed {total_paid} of {contest.prize_pool_amount} to {len(lines)} winners")
        await self.notifier.publish(Event(
            type=CONTEST_DISBURSED,
            topic="contest",
            entity_id=contest_id,
            payload={"payouts": payouts, "total_paid": total_paid},
        ))
        return {
            "contest_id": contest_id,
            "status": contest.status.value,
            "payouts": payouts,
            "total_paid": total_paid,
            "retained": contest.prize_pool_amount - total_paid,
        }

    @staticmethod
    def _record_ranks(ranking: List[RankedEntry], by_enrollment: dict):
        for entry in ranking:
            if entry.position is not None:
                by_enrollment[entry.enrollment_id].rank = entry.position

    async def cancel(self, contest_id: int) -> dict:
        """Cancel a contest and refund every paid entry fee."""
        await self.sync_phase(contest_id)

        async def work(session: AsyncSession):
            contest = await self.load_contest(session, contest_id, lock=True)
            transitions = await self.apply_due_transitions(session, contest)
            source = contest.status
            if source not in CANCELLABLE:
                raise InvalidContestState(contest_id, source, CANCELLABLE)
            if not await self.transition(session, contest, source, ContestStatus.CANCELLED):
                raise InvalidContestState(contest_id, await self.current_status(session, contest), CANCELLABLE)

            enrollments = (await session.scalars(
                select(ContestEnrollment)
                .where(ContestEnrollment.contest_id == contest_id,
                       ContestEnrollment.payment_status == PaymentStatus.PAID))).all()
            refunds = []
            for enrollment in enrollments:
                if enrollment.fee_paid > 0:
                    await self.ledger.apply_credit(
                        session, enrollment.user_id, enrollment.fee_paid, TransactionKind.ENTRY_REFUND, contest_id)
                enrollment.payment_status = PaymentStatus.REFUNDED
                refunds.append({"user_id": enrollment.user_id, "amount": enrollment.fee_paid})
            contest.escrow_balance = 0
            await session.flush()
            return source, transitions, refunds

        source, transitions, refunds = await run_in_transaction(self.session_factory, work)
        await self._publish_transitions(contest_id, transitions)

        total_refunded = sum(r["amount"] for r in refunds)
        logger.info(
            f"contest {contest_id} cancelled from {source.value}, refunded {total_refunded} to {len(refunds)} entrants")
        await self.notifier.publish(Event(
            type=CONTEST_CANCELLED,
            topic="contest",
            entity_id=contest_id,
            payload={"refunds": refunds, "total_refunded": total_refunded},
        ))
        return {
            "contest_id": contest_id,
            "status": ContestStatus.CANCELLED.value,
            "refunds": refunds,
            "total_refunded": total_refunded,
        }
