from datetime import datetime
from enum import Enum
from typing import Optional
import uuid
from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text, Uuid, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from pollpeak.db.base import Base
from pollpeak.models import TimestampMixin


class RewardStatus(str, Enum):
    PENDING = "PENDING"
    SETTLED = "SETTLED"


class PendingReward(Base, TimestampMixin):
    """
    Outbox row for a vote reward. Written together with the vote and settled
    together with the ledger credit, so a reward is paid at most once and a
    failed credit is left here for reconciliation.
    """
    __tablename__ = "pending_rewards"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    vote_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("vote_log.vote_id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    poll_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[RewardStatus] = mapped_column(
        SAEnum(RewardStatus, name="reward_status_enum"), default=RewardStatus.PENDING, nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True)
