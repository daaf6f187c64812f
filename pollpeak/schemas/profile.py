from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field
from pollpeak.models.ledger_transaction import TransactionKind
from pollpeak.models.profile import ProfileRole


class ProfileBase(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    role: ProfileRole = ProfileRole.USER


class ProfileCreate(ProfileBase):
    opening_balance: int = Field(default=0, ge=0)


class ProfileResponse(ProfileBase):
    points: int
    created_at: datetime

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    user_id: str
    points: int


class TransactionResponse(BaseModel):
    id: UUID
    delta: int
    kind: TransactionKind
    reference_id: Optional[str]
    balance_after: int
    created_at: datetime

    class Config:
        from_attributes = True


class AuditResponse(BaseModel):
    user_id: str
    cached_balance: int
    ledger_sum: int
    consistent: bool
