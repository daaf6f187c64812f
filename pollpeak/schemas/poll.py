from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator
from pollpeak.core.clock import as_utc


class PollBase(BaseModel):
    question: str = Field(min_length=1, max_length=255)
    category: Optional[str] = None


class PollCreate(PollBase):
    options: List[str] = Field(min_length=2)  # option texts, in display order
    created_by: Optional[str] = None
    is_active: bool = True
    start_date: Optional[datetime] = None
    active_until: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.active_until and as_utc(self.active_until) <= as_utc(self.start_date):
            raise ValueError("active_until must be after start_date")
        if any(not text.strip() for text in self.options):
            raise ValueError("option text must not be empty")
        return self


class OptionResponse(BaseModel):
    index: int
    text: str


class PollResponse(PollBase):
    id: int
    is_active: bool
    start_date: Optional[datetime]
    active_until: Optional[datetime]
    total_votes: int
    options: List[OptionResponse]
    created_at: datetime


class OptionTally(OptionResponse):
    votes: int
    percentage: float


class PollResultsResponse(BaseModel):
    poll_id: int
    question: str
    total_votes: int
    options: List[OptionTally]


class VoteRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    option_index: int


class VoteResponse(BaseModel):
    poll_id: int
    total_votes: int
    options: List[OptionTally]
    points_awarded: int


class CheckVoteResponse(BaseModel):
    poll_id: int
    user_id: str
    has_voted: bool
