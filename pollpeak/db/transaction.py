import asyncio
import logging
from typing import Awaitable, Callable, TypeVar
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.config import settings
from pollpeak.core.exceptions import StorageContention

logger = logging.getLogger(__name__)

T = TypeVar("T")

# postgres serialization_failure, deadlock_detected, lock_not_available
RETRIABLE_SQLSTATES = {"40001", "40P01", "55P03"}


def is_contention_error(error: Exception) -> bool:
    if isinstance(error, IntegrityError):
        return False
    if not isinstance(error, DBAPIError):
        return False
    if error.connection_invalidated:
        return True
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRIABLE_SQLSTATES:
        return True
    # sqlite reports busy/locked database as an OperationalError
    return isinstance(error, OperationalError) and "locked" in str(orig).lower()


async def run_in_transaction(session_factory: async_sessionmaker[AsyncSession],
                             work: Callable[[AsyncSession], Awaitable[T]],
                             max_retries: int = None,
                             base_delay: float = None) -> T:
    """
    Run `work` inside one database transaction and commit it.

    The whole unit is retried with exponential backoff when the commit fails
    because of storage contention. Business errors raised by `work` roll the
    transaction back and propagate unchanged.
    """
    max_retries = max_retries or settings.LEDGER_MAX_RETRIES
    base_delay = settings.LEDGER_RETRY_BASE_DELAY if base_delay is None else base_delay
    for attempt in range(max_retries):
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await work(session)
        except DBAPIError as e:
            if not is_contention_error(e):
                raise
            logger.warning(
                f"transaction contention on attempt {attempt + 1}/{max_retries}: {e.orig}")
        await asyncio.sleep(base_delay * (2 ** attempt))
    raise StorageContention()
