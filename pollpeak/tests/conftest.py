import pytest
from datetime import datetime, timedelta, timezone
from httpx import ASGITransport, AsyncClient
from pollpeak.core.config import settings
from pollpeak.crud.contest import crud_contest
from pollpeak.crud.poll import crud_poll
from pollpeak.crud.profile import crud_profile
from pollpeak.db.base import Base
from pollpeak.db.core import build_engine, build_session_factory
from pollpeak.models import ProfileRole
from pollpeak.schemas.contest import ContestCreate
from pollpeak.schemas.poll import PollCreate
from pollpeak.schemas.profile import ProfileCreate
from pollpeak.services.contest_lifecycle import ContestLifecycleManager
from pollpeak.services.escrow import EntryEscrow
from pollpeak.services.ledger import LedgerService
from pollpeak.services.notifier import InMemoryNotifier
from pollpeak.services.voting import VoteAggregator
import pollpeak.models  # noqa: F401

STANDARD_PAYOUTS = [
    {"rank": 1, "percentage": 50},
    {"rank": 2, "percentage": 30},
    {"rank": 3, "percentage": 20},
]


class FakeClock:
    """Controllable stand-in for utcnow."""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2025, 7, 12, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def db_engine(tmp_path):
    """Create a database engine for the tests.

    Function-scoped so every test gets a clean schema in its own event loop.
    """
    test_db_url = settings.TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'pollpeak_test.db'}"
    engine = build_engine(test_db_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    """Factory to create multiple sessions for concurrent tests."""
    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def ledger(db_session_factory):
    return LedgerService(db_session_factory, max_retries=10, base_delay=0.01)


@pytest.fixture
def voting(db_session_factory, ledger, notifier, clock):
    return VoteAggregator(db_session_factory, ledger, notifier, clock=clock, reward_points=50)


@pytest.fixture
def lifecycle(db_session_factory, ledger, notifier, clock):
    return ContestLifecycleManager(db_session_factory, ledger, notifier, clock=clock, lead_hours=24)


@pytest.fixture
def escrow(db_session_factory, ledger, lifecycle, notifier):
    return EntryEscrow(db_session_factory, ledger, lifecycle, notifier)


@pytest.fixture
def make_profile(db_session_factory, ledger):
    async def _make(user_id: str, balance: int = 0, role: ProfileRole = ProfileRole.USER):
        async with db_session_factory() as session:
            return await crud_profile.create_profile(
                session, ProfileCreate(user_id=user_id, role=role, opening_balance=balance), ledger)
    return _make


@pytest.fixture
def make_poll(db_session_factory):
    async def _make(options=("A", "B"), question: str = "Which one?", **kwargs):
        async with db_session_factory() as session:
            return await crud_poll.create_poll(
                session, PollCreate(question=question, options=list(options), **kwargs))
    return _make


@pytest.fixture
def make_contest(db_session_factory, clock):
    """
    Contest starting an hour from the fake clock's now, so it is already
    inside its 24h enrollment window.
    """
    async def _make(entry_fee: int = 100,
                    prize_pool_amount: int = 1000,
                    num_winners: int = 3,
                    payout_structure=None,
                    starts_in: timedelta = timedelta(hours=1),
                    duration: timedelta = timedelta(hours=1),
                    **kwargs):
        start_time = clock() + starts_in
        data = ContestCreate(
            title="Friday Trivia",
            entry_fee=entry_fee,
            start_time=start_time,
            end_time=start_time + duration,
            prize_pool_amount=prize_pool_amount,
            num_winners=num_winners,
            payout_structure=STANDARD_PAYOUTS if payout_structure is None else payout_structure,
            **kwargs,
        )
        async with db_session_factory() as session:
            return await crud_contest.create_contest(session, data)
    return _make


@pytest.fixture
def play_contest(lifecycle, escrow, clock):
    """Enroll the given players, let the contest run, submit scores and end it."""
    async def _play(contest, scores: dict):
        for user_id in scores:
            await escrow.enroll(contest.id, user_id)
            clock.advance(seconds=1)
        clock.advance(hours=1)
        for user_id, score in scores.items():
            if score is not None:
                await lifecycle.submit_score(contest.id, user_id, score)
        clock.advance(hours=1)
        return await lifecycle.sync_phase(contest.id)
    return _play


@pytest.fixture
async def client(db_session_factory, notifier, clock):
    from pollpeak.app import create_app
    app = create_app(session_factory=db_session_factory, notifier=notifier, clock=clock)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
