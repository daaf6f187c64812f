from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.services.contest_lifecycle import ContestLifecycleManager
from pollpeak.services.escrow import EntryEscrow
from pollpeak.services.ledger import LedgerService
from pollpeak.services.voting import VoteAggregator


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        yield session
        await session.rollback()


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_voting(request: Request) -> VoteAggregator:
    return request.app.state.voting


def get_lifecycle(request: Request) -> ContestLifecycleManager:
    return request.app.state.lifecycle


def get_escrow(request: Request) -> EntryEscrow:
    return request.app.state.escrow
