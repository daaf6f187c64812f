from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.api.deps import get_db_session, get_ledger
from pollpeak.crud.profile import crud_profile
from pollpeak.models.ledger_transaction import TransactionKind
from pollpeak.schemas.profile import AuditResponse, BalanceResponse, ProfileCreate, ProfileResponse, TransactionResponse
from pollpeak.services.ledger import LedgerService

router = APIRouter(prefix="/profiles")


@router.post("", response_model=ProfileResponse, status_code=201)
async def create_profile(request: ProfileCreate, db: AsyncSession = Depends(get_db_session),
                         ledger: LedgerService = Depends(get_ledger)):
    return await crud_profile.create_profile(db, request, ledger)


@router.get("/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(user_id: str, ledger: LedgerService = Depends(get_ledger)):
    points = await ledger.balance(user_id)
    return BalanceResponse(user_id=user_id, points=points)


@router.get("/{user_id}/transactions", response_model=List[TransactionResponse])
async def get_transactions(user_id: str,
                           limit: int = Query(default=50, ge=1, le=500),
                           kind: Optional[TransactionKind] = None,
                           ledger: LedgerService = Depends(get_ledger)):
    return await ledger.history(user_id, limit=limit, kind=kind)


@router.get("/{user_id}/audit", response_model=AuditResponse)
async def audit(user_id: str, ledger: LedgerService = Depends(get_ledger)):
    return await ledger.audit(user_id)
