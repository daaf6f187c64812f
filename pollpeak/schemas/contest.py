from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator
from pollpeak.core.clock import as_utc
from pollpeak.models.contest import ContestStatus


class PayoutTier(BaseModel):
    rank: int = Field(gt=0)
    percentage: float = Field(ge=0, le=100)


class ContestBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    trivia_game_id: Optional[str] = None
    entry_fee: int = Field(default=0, ge=0)
    start_time: datetime
    end_time: datetime
    enrollment_opens_at: Optional[datetime] = None
    prize_pool_amount: int = Field(default=0, ge=0)
    prize_pool_currency: str = "POINTS"
    num_winners: int = Field(default=1, gt=0)
    payout_structure: List[PayoutTier]


class ContestCreate(ContestBase):
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        if as_utc(self.end_time) <= as_utc(self.start_time):
            raise ValueError("end_time must be after start_time")
        if self.enrollment_opens_at and as_utc(self.enrollment_opens_at) > as_utc(self.start_time):
            raise ValueError("enrollment_opens_at must not be after start_time")
        return self


class ContestResponse(ContestBase):
    id: int
    status: ContestStatus
    escrow_balance: int
    fees_collected: int
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class EnrollRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class EnrollResponse(BaseModel):
    contest_id: int
    user_id: str
    enrollment_id: int


class PhaseRequest(BaseModel):
    # disbursed and cancelled have their own endpoints
    target: Literal["enrolling", "active", "ended"]


class ScoreRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    score: float = Field(ge=0, allow_inf_nan=False)


class ScoreResponse(BaseModel):
    contest_id: int
    user_id: str
    score: float


class PlayStatusResponse(BaseModel):
    can_play: bool
    message: str


class LeaderboardEntry(BaseModel):
    position: Optional[int]
    payout_rank: Optional[int]
    user_id: str
    score: Optional[float]
    prize_awarded: int


class PayoutLineResponse(BaseModel):
    user_id: str
    rank: int
    amount: int


class DisburseResponse(BaseModel):
    contest_id: int
    status: ContestStatus
    payouts: List[PayoutLineResponse]
    total_paid: int
    retained: int


class RefundLine(BaseModel):
    user_id: str
    amount: int


class CancelResponse(BaseModel):
    contest_id: int
    status: ContestStatus
    refunds: List[RefundLine]
    total_refunded: int
