import logging
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from pollpeak.core.config import settings
from pollpeak.db.base import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        # every session gets its own connection so sqlite's file lock serializes writers
        return create_async_engine(url, echo=echo, poolclass=NullPool,
                                   connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS})
    return create_async_engine(url,
                               echo=echo,
                               pool_size=10,
                               max_overflow=20,
                               pool_timeout=30,
                               pool_recycle=3600,
                               pool_pre_ping=True
                               )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
async_session_factory = build_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """
    Create all tables for the registered models.
    """
    import pollpeak.models  # noqa: F401  registers every table on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("created all tables")
