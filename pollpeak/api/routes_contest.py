from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.api.deps import get_db_session, get_escrow, get_lifecycle
from pollpeak.crud.contest import crud_contest
from pollpeak.models.contest import ContestStatus
from pollpeak.schemas.contest import (
    CancelResponse,
    ContestCreate,
    ContestResponse,
    DisburseResponse,
    EnrollRequest,
    EnrollResponse,
    LeaderboardEntry,
    PhaseRequest,
    PlayStatusResponse,
    ScoreRequest,
    ScoreResponse,
)
from pollpeak.services.contest_lifecycle import ContestLifecycleManager
from pollpeak.services.escrow import EntryEscrow

router = APIRouter(prefix="/contests")


@router.get("", response_model=List[ContestResponse])
async def list_contests(db: AsyncSession = Depends(get_db_session),
                        lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    await lifecycle.sync_due_contests()
    return await crud_contest.get_all_contests(db)


@router.post("", response_model=ContestResponse, status_code=201)
async def create_contest(data: ContestCreate, db: AsyncSession = Depends(get_db_session),
                         lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    contest = await crud_contest.create_contest(db, data)
    # a contest created inside its enrollment window opens right away
    return await lifecycle.sync_phase(contest.id)


@router.get("/{contest_id}", response_model=ContestResponse)
async def get_contest(contest_id: int, lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.get_contest(contest_id)


@router.post("/{contest_id}/enroll", response_model=EnrollResponse, status_code=201)
async def enroll(contest_id: int, request: EnrollRequest, escrow: EntryEscrow = Depends(get_escrow)):
    enrollment_id = await escrow.enroll(contest_id, request.user_id)
    return EnrollResponse(contest_id=contest_id, user_id=request.user_id, enrollment_id=enrollment_id)


@router.post("/{contest_id}/phase", response_model=ContestResponse)
async def advance_phase(contest_id: int, request: PhaseRequest,
                        lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.advance_phase(contest_id, ContestStatus(request.target))


@router.post("/{contest_id}/scores", response_model=ScoreResponse)
async def submit_score(contest_id: int, request: ScoreRequest,
                       lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.submit_score(contest_id, request.user_id, request.score)


@router.get("/{contest_id}/play-status/{user_id}", response_model=PlayStatusResponse)
async def play_status(contest_id: int, user_id: str, lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.play_status(contest_id, user_id)


@router.get("/{contest_id}/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(contest_id: int, lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.leaderboard(contest_id)


@router.post("/{contest_id}/disburse", response_model=DisburseResponse)
async def disburse(contest_id: int, lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.disburse(contest_id)


@router.post("/{contest_id}/cancel", response_model=CancelResponse)
async def cancel(contest_id: int, lifecycle: ContestLifecycleManager = Depends(get_lifecycle)):
    return await lifecycle.cancel(contest_id)
