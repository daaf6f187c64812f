from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, mapped_column


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


from .profile import Profile, ProfileRole  # noqa: E402
from .ledger_transaction import LedgerTransaction, TransactionKind  # noqa: E402
from .poll import Poll, PollOption  # noqa: E402
from .vote_log import VoteLog  # noqa: E402
from .pending_reward import PendingReward, RewardStatus  # noqa: E402
from .contest import Contest, ContestStatus  # noqa: E402
from .contest_enrollment import ContestEnrollment, PaymentStatus  # noqa: E402
from .payout import Payout  # noqa: E402

__all__ = [
    "TimestampMixin",
    "Profile", "ProfileRole",
    "LedgerTransaction", "TransactionKind",
    "Poll", "PollOption",
    "VoteLog",
    "PendingReward", "RewardStatus",
    "Contest", "ContestStatus",
    "ContestEnrollment", "PaymentStatus",
    "Payout",
]
