from sqlalchemy import BigInteger, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from pollpeak.db.base import Base, BigIntPK
from pollpeak.models import TimestampMixin


class VoteLog(Base, TimestampMixin):
    """
    One row per vote. The (poll_id, user_id) unique key is what guarantees a
    single vote per user per poll under concurrent writers.
    """

    __tablename__ = "vote_log"
    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", name="uix_poll_user_unique"),
    )
    vote_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    poll_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    option_index: Mapped[int] = mapped_column(Integer, nullable=False)
