from sqlalchemy import BigInteger, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from pollpeak.db.base import Base, BigIntPK
from pollpeak.models import TimestampMixin


class Payout(Base, TimestampMixin):
    __tablename__ = "payouts"
    __table_args__ = (
        UniqueConstraint("contest_id", "rank", name="uix_payout_contest_rank"),
        UniqueConstraint("contest_id", "user_id", name="uix_payout_contest_user"),
    )
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    contest_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("trivia_contests.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
