from enum import Enum
from sqlalchemy import BigInteger, CheckConstraint, String, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from pollpeak.db.base import Base
from pollpeak.models import TimestampMixin


class ProfileRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Profile(Base, TimestampMixin):
    """
    Point balance holder. `points` is a cached running sum of the user's
    ledger transactions and is only written by the ledger service.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_profiles_points_non_negative"),
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[ProfileRole] = mapped_column(
        SAEnum(ProfileRole, name="profile_role_enum"), default=ProfileRole.USER, nullable=False)
    points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    version: Mapped[int] = mapped_column(default=0, nullable=False)
