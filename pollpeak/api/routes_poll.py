from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.api.deps import get_db_session, get_voting
from pollpeak.core.exceptions import PollNotFound
from pollpeak.crud.poll import crud_poll
from pollpeak.schemas.poll import (
    CheckVoteResponse,
    PollCreate,
    PollResponse,
    PollResultsResponse,
    VoteRequest,
    VoteResponse,
)
from pollpeak.services.voting import VoteAggregator

router = APIRouter(prefix="/polls")


@router.get("", response_model=List[PollResponse])
async def list_polls(db: AsyncSession = Depends(get_db_session)):
    polls = await crud_poll.get_all_polls(db)
    return [crud_poll.to_response(poll) for poll in polls]


@router.post("", response_model=PollResponse, status_code=201)
async def create_poll(poll_data: PollCreate, db: AsyncSession = Depends(get_db_session)):
    """Create a new poll with options."""
    poll = await crud_poll.create_poll(db, poll_data)
    return crud_poll.to_response(poll)


@router.get("/{poll_id}", response_model=PollResponse)
async def get_poll(poll_id: int, db: AsyncSession = Depends(get_db_session)):
    poll = await crud_poll.get_poll_by_id(db, poll_id)
    if not poll:
        raise PollNotFound(poll_id)
    return crud_poll.to_response(poll)


@router.post("/{poll_id}/vote", response_model=VoteResponse)
async def vote_poll(poll_id: int, vote: VoteRequest, voting: VoteAggregator = Depends(get_voting)):
    return await voting.cast_vote(poll_id, vote.user_id, vote.option_index)


@router.get("/{poll_id}/results", response_model=PollResultsResponse)
async def get_poll_results(poll_id: int, voting: VoteAggregator = Depends(get_voting)):
    """Get poll results with vote counts."""
    return await voting.get_tally(poll_id)


@router.get("/{poll_id}/check-vote/{user_id}", response_model=CheckVoteResponse)
async def check_user_vote(poll_id: int, user_id: str, voting: VoteAggregator = Depends(get_voting)):
    """Check if a user has already voted on a poll."""
    has_voted = await voting.has_voted(poll_id, user_id)
    return CheckVoteResponse(poll_id=poll_id, user_id=user_id, has_voted=has_voted)
