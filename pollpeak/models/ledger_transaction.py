from datetime import datetime, timezone
from enum import Enum
import uuid
from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Uuid, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from pollpeak.db.base import Base


class TransactionKind(str, Enum):
    VOTE_REWARD = "vote_reward"
    ENTRY_FEE = "entry_fee"
    ENTRY_REFUND = "entry_refund"
    PRIZE_PAYOUT = "prize_payout"
    GRANT = "grant"


class LedgerTransaction(Base):
    """Append-only record of one balance change."""
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        Index("ix_ledger_transactions_user_created", "user_id", "created_at"),
        Index("ix_ledger_transactions_reference", "kind", "reference_id"),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.user_id"), nullable=False)
    # signed: credits are positive, debits negative
    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind, name="transaction_kind_enum"), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(64), nullable=True)
    # the profile's balance after this transaction
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(
        timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
