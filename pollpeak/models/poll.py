from datetime import datetime
from typing import List, Optional
from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pollpeak.db.base import Base, BigIntPK
from pollpeak.models import TimestampMixin


class Poll(Base, TimestampMixin):
    """
      orm mapping for the polls table. `total_votes` is kept equal to the sum
      of the option tallies by the vote aggregator.
    """
    __tablename__ = "polls"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    question: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True)
    active_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True)
    total_votes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    options: Mapped[List["PollOption"]] = relationship(
        back_populates="poll", cascade="all, delete-orphan", order_by="PollOption.position")


class PollOption(Base, TimestampMixin):
    __tablename__ = "poll_options"
    __table_args__ = (
        UniqueConstraint("poll_id", "position", name="uix_poll_option_position"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    poll_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(String(255), nullable=False)
    votes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    poll: Mapped["Poll"] = relationship(back_populates="options")
