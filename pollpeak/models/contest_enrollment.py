from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pollpeak.db.base import Base, BigIntPK


class PaymentStatus(str, Enum):
    PAID = "paid"
    REFUNDED = "refunded"


class ContestEnrollment(Base):
    __tablename__ = "contest_enrollments"
    __table_args__ = (
        UniqueConstraint("contest_id", "user_id", name="uix_contest_user_unique"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    contest_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("trivia_contests.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False)
    enrollment_time: Mapped[datetime] = mapped_column(DateTime(
        timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    fee_paid: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, name="enrollment_payment_status_enum"), default=PaymentStatus.PAID, nullable=False)
    has_played: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prize_awarded: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    contest: Mapped["Contest"] = relationship(back_populates="enrollments")
