import asyncio
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from pollpeak.core.exceptions import InsufficientFunds, ProfileNotFound, StorageContention
from pollpeak.db.transaction import is_contention_error, run_in_transaction
from pollpeak.models import LedgerTransaction, TransactionKind


async def test_credit_and_debit_append_transactions(make_profile, ledger):
    await make_profile("alice", balance=200)

    await ledger.credit("alice", 50, TransactionKind.VOTE_REWARD, 7)
    debit = await ledger.debit("alice", 120, TransactionKind.ENTRY_FEE, 3)

    assert debit.delta == -120
    assert debit.balance_after == 130
    assert await ledger.balance("alice") == 130

    history = await ledger.history("alice")
    assert sorted(t.delta for t in history) == [-120, 50, 200]
    assert {t.kind for t in history} == {TransactionKind.GRANT, TransactionKind.VOTE_REWARD, TransactionKind.ENTRY_FEE}


async def test_debit_beyond_balance_changes_nothing(make_profile, ledger, db_session_factory):
    await make_profile("bob", balance=50)

    with pytest.raises(InsufficientFunds) as exc_info:
        await ledger.debit("bob", 100, TransactionKind.ENTRY_FEE, 1)

    assert exc_info.value.required == 100
    assert exc_info.value.available == 50
    assert await ledger.balance("bob") == 50
    async with db_session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(LedgerTransaction).where(LedgerTransaction.user_id == "bob"))
    assert count == 1  # only the opening grant


@pytest.mark.parametrize("amount", [0, -5, 1.5, True])
async def test_amount_must_be_a_positive_integer(make_profile, ledger, amount):
    await make_profile("carol", balance=10)
    with pytest.raises(ValueError):
        await ledger.credit("carol", amount, TransactionKind.GRANT)


async def test_unknown_profile(ledger):
    with pytest.raises(ProfileNotFound):
        await ledger.credit("ghost", 10, TransactionKind.GRANT)
    with pytest.raises(ProfileNotFound):
        await ledger.debit("ghost", 10, TransactionKind.ENTRY_FEE)
    with pytest.raises(ProfileNotFound):
        await ledger.balance("ghost")


async def test_audit_matches_ledger_sum(make_profile, ledger):
    await make_profile("dave", balance=300)
    await ledger.debit("dave", 100, TransactionKind.ENTRY_FEE, 1)
    await ledger.credit("dave", 500, TransactionKind.PRIZE_PAYOUT, 1)

    report = await ledger.audit("dave")

    assert report == {"user_id": "dave", "cached_balance": 700, "ledger_sum": 700, "consistent": True}


async def test_concurrent_debits_never_overdraw(make_profile, ledger):
    """
    Test: 5 concurrent debits of 30 against a balance of 100.
    Expected: exactly 3 succeed, the balance ends at 10.
    """
    await make_profile("erin", balance=100)

    async def make_request(i):
        try:
            await ledger.debit("erin", 30, TransactionKind.ENTRY_FEE, i)
            return {"success": True}
        except InsufficientFunds:
            return {"success": False, "error": "insufficient_funds"}
        except Exception as e:
            return {"success": False, "error": str(e)}

    results = await asyncio.gather(*[make_request(i) for i in range(5)])

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    assert len(successful) == 3, f"Expected 3 successes, got {len(successful)}. Results: {results}"
    assert all(r["error"] == "insufficient_funds" for r in failed), f"Results: {failed}"
    assert await ledger.balance("erin") == 10
    assert (await ledger.audit("erin"))["consistent"]


def test_contention_classification():
    locked = OperationalError("UPDATE profiles", {}, Exception("database is locked"))
    duplicate = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    assert is_contention_error(locked)
    assert not is_contention_error(duplicate)
    assert not is_contention_error(ValueError("nope"))


async def test_run_in_transaction_retries_contention(db_session_factory):
    calls = []

    async def flaky(session):
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))
        return "done"

    assert await run_in_transaction(db_session_factory, flaky, max_retries=5, base_delay=0) == "done"
    assert len(calls) == 3


async def test_run_in_transaction_gives_up(db_session_factory):
    async def always_locked(session):
        raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))

    with pytest.raises(StorageContention):
        await run_in_transaction(db_session_factory, always_locked, max_retries=2, base_delay=0)


async def test_run_in_transaction_does_not_retry_business_errors(db_session_factory):
    calls = []

    async def fails(session):
        calls.append(1)
        raise ProfileNotFound("nobody")

    with pytest.raises(ProfileNotFound):
        await run_in_transaction(db_session_factory, fails, max_retries=5, base_delay=0)
    assert len(calls) == 1
