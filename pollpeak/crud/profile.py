from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from pollpeak.core.exceptions import ProfileAlreadyExists
from pollpeak.models.ledger_transaction import TransactionKind
from pollpeak.models.profile import Profile
from pollpeak.schemas.profile import ProfileCreate
from pollpeak.services.ledger import LedgerService


class CRUDProfile:
    async def get_profile(self, db: AsyncSession, user_id: str) -> Profile | None:
        result = await db.execute(select(Profile).where(Profile.user_id == user_id))
        return result.scalar_one_or_none()

    async def create_profile(self, db: AsyncSession, data: ProfileCreate, ledger: LedgerService) -> Profile:
        """
        Open a points account. A non-zero opening balance is booked as a
        grant so the balance always equals the ledger sum.
        """
        profile = Profile(user_id=data.user_id, role=data.role, points=0)
        db.add(profile)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ProfileAlreadyExists(data.user_id)
        if data.opening_balance > 0:
            await ledger.apply_credit(
                db, data.user_id, data.opening_balance, TransactionKind.GRANT, "opening_balance")
        await db.commit()
        # the balance was written by a core UPDATE, reload it
        await db.refresh(profile)
        return profile


crud_profile = CRUDProfile()
