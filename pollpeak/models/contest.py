from datetime import datetime
from enum import Enum
from typing import List, Optional
from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pollpeak.db.base import Base, BigIntPK, JSONDocument
from pollpeak.models import TimestampMixin


class ContestStatus(str, Enum):
    UPCOMING = "upcoming"
    ENROLLING = "enrolling"
    ACTIVE = "active"
    ENDED = "ended"
    DISBURSED = "disbursed"
    CANCELLED = "cancelled"


class Contest(Base, TimestampMixin):
    __tablename__ = "trivia_contests"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_contest_valid_times"),
        CheckConstraint("entry_fee >= 0", name="ck_contest_valid_entry_fee"),
        CheckConstraint("num_winners > 0", name="ck_contest_valid_num_winners"),
        CheckConstraint("prize_pool_amount >= 0", name="ck_contest_valid_prize_pool"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    trivia_game_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_fee: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # when unset, enrollment opens ENROLLMENT_LEAD_HOURS before start_time
    enrollment_opens_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True)
    status: Mapped[ContestStatus] = mapped_column(
        SAEnum(ContestStatus, name="contest_status_enum"), default=ContestStatus.UPCOMING, nullable=False)
    # minor currency units
    prize_pool_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    prize_pool_currency: Mapped[str] = mapped_column(String(16), default="POINTS", nullable=False)
    num_winners: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # [{"rank": 1, "percentage": 50}, ...]
    payout_structure: Mapped[list] = mapped_column(JSONDocument, default=list, nullable=False)
    # fees currently held for this contest, and the lifetime total collected
    escrow_balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    fees_collected: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    enrollments: Mapped[List["ContestEnrollment"]] = relationship(
        back_populates="contest", cascade="all, delete-orphan")
