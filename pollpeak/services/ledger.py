import logging
from typing import List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.exceptions import InsufficientFunds, ProfileNotFound
from pollpeak.db.transaction import run_in_transaction
from pollpeak.models.ledger_transaction import LedgerTransaction, TransactionKind
from pollpeak.models.profile import Profile

logger = logging.getLogger(__name__)


def _check_amount(amount: int):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"ledger amount must be a positive integer, got {amount!r}")


class LedgerService:
    """
    Point balances as an append-only transaction log plus a cached balance.

    Every credit/debit is one conditional UPDATE of the cached balance
    (RETURNING the new value) and one INSERT of the transaction row, issued on
    the same session, so both land in the same database transaction or
    neither does. The apply_* methods join the caller's transaction; credit()
    and debit() run as their own retried atomic unit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_retries: int = None, base_delay: float = None):
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def apply_credit(self, session: AsyncSession, user_id: str, amount: int, kind: TransactionKind, reference_id=None) -> LedgerTransaction:
        _check_amount(amount)
        result = await session.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .values(points=Profile.points + amount, version=Profile.version + 1)
            .returning(Profile.points)
            .execution_options(synchronize_session=False))
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            raise ProfileNotFound(user_id)
        return await self._append(session, user_id, amount, kind, reference_id, new_balance)

    async def apply_debit(self, session: AsyncSession, user_id: str, amount: int, kind: TransactionKind, reference_id=None) -> LedgerTransaction:
        _check_amount(amount)
        # the balance guard is part of the UPDATE so concurrent debits cannot overdraw
        result = await session.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .where(Profile.points >= amount)
            .values(points=Profile.points - amount, version=Profile.version + 1)
            .returning(Profile.points)
            .execution_options(synchronize_session=False))
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            available = await session.scalar(select(Profile.points).where(Profile.user_id == user_id))
            if available is None:
                raise ProfileNotFound(user_id)
            raise InsufficientFunds(user_id, required=amount, available=available)
        return await self._append(session, user_id, -amount, kind, reference_id, new_balance)

    async def _append(self, session: AsyncSession, user_id: str, delta: int, kind: TransactionKind, reference_id, balance_after: int) -> LedgerTransaction:
        transaction = LedgerTransaction(
            user_id=user_id,
            delta=delta,
            kind=kind,
            reference_id=None if reference_id is None else str(reference_id),
            balance_after=balance_after,
        )
        session.add(transaction)
        await session.flush()
        logger.debug(
            f"ledger {kind.value} {delta:+d} for {user_id} (ref {reference_id}), balance {balance_after}")
        return transaction

    async def credit(self, user_id: str, amount: int, kind: TransactionKind, reference_id=None) -> LedgerTransaction:
        async def work(session: AsyncSession):
            return await self.apply_credit(session, user_id, amount, kind, reference_id)
        return await run_in_transaction(self.session_factory, work, self.max_retries, self.base_delay)

    async def debit(self, user_id: str, amount: int, kind: TransactionKind, reference_id=None) -> LedgerTransaction:
        async def work(session: AsyncSession):
            return await self.apply_debit(session, user_id, amount, kind, reference_id)
        return await run_in_transaction(self.session_factory, work, self.max_retries, self.base_delay)

    async def balance(self, user_id: str) -> int:
        async with self.session_factory() as session:
            points = await session.scalar(select(Profile.points).where(Profile.user_id == user_id))
        if points is None:
            raise ProfileNotFound(user_id)
        return points

    async def history(self, user_id: str, limit: int = 50, kind: Optional[TransactionKind] = None) -> List[LedgerTransaction]:
        async with self.session_factory() as session:
            exists = await session.scalar(select(Profile.user_id).where(Profile.user_id == user_id))
            if exists is None:
                raise ProfileNotFound(user_id)
            stmt = (select(LedgerTransaction)
                    .where(LedgerTransaction.user_id == user_id)
                    .order_by(LedgerTransaction.created_at.desc())
                    .limit(limit))
            if kind is not None:
                stmt = stmt.where(LedgerTransaction.kind == kind)
            result = await session.scalars(stmt)
            return list(result.all())

    async def audit(self, user_id: str) -> dict:
        """Compare the cached balance with the sum of the user's transactions."""
        async with self.session_factory() as session:
            cached = await session.scalar(select(Profile.points).where(Profile.user_id == user_id))
            if cached is None:
                raise ProfileNotFound(user_id)
            ledger_sum = await session.scalar(
                select(func.coalesce(func.sum(LedgerTransaction.delta), 0))
                .where(LedgerTransaction.user_id == user_id))
        consistent = cached == ledger_sum
        if not consistent:
            logger.error(
                f"balance mismatch for {user_id}: cached {cached}, ledger sum {ledger_sum}")
        return {"user_id": user_id, "cached_balance": cached, "ledger_sum": int(ledger_sum), "consistent": consistent}
