import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pollpeak.core.clock import Clock, utcnow
from pollpeak.core.config import settings
from pollpeak.core.exceptions import PollPeakError
from pollpeak.core.logging_config import configure_logging
from pollpeak.db.core import async_session_factory, init_db
from pollpeak.services.contest_lifecycle import ContestLifecycleManager
from pollpeak.services.escrow import EntryEscrow
from pollpeak.services.ledger import LedgerService
from pollpeak.services.notifier import ConnectionManager, FanoutNotifier, Notifier, RedisNotifier
from pollpeak.services.voting import VoteAggregator
from pollpeak.workers.contest_status_worker import ContestStatusWorker
from pollpeak.workers.reward_worker import RewardReconciliationWorker
import pollpeak.api.routes_contest as routes_contest
import pollpeak.api.routes_health as routes_health
import pollpeak.api.routes_poll as routes_poll
import pollpeak.api.routes_profile as routes_profile
import pollpeak.api.routes_ws as routes_ws

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(f"starting {settings.APP_NAME} ({settings.ENV})")
    await init_db(app.state.session_factory.kw["bind"])
    if settings.SEED_ON_STARTUP:
        from pollpeak.scripts import seed_data
        await seed_data.seed_data(app.state.session_factory, app.state.ledger)

    tasks = []
    if settings.RUN_WORKERS:
        tasks.append(asyncio.create_task(ContestStatusWorker(app.state.lifecycle).run()))
        tasks.append(asyncio.create_task(RewardReconciliationWorker(app.state.voting).run()))
    yield
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    if app.state.redis is not None:
        from pollpeak.redis import close_redis
        await close_redis()
    logger.info("shut down")


def create_app(session_factory: async_sessionmaker[AsyncSession] = None,
               notifier: Notifier = None,
               clock: Clock = utcnow):
    """
    Build the API. Tests pass their own session factory and notifier; by
    default the configured database and Redis are used.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Polls, trivia contests and the points ledger behind them",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    session_factory = session_factory or async_session_factory
    connection_manager = ConnectionManager()
    app.state.redis = None
    if notifier is None:
        from pollpeak.redis import redis_client
        app.state.redis = redis_client
        notifier = RedisNotifier(redis_client, prefix=settings.NOTIFY_CHANNEL_PREFIX)
    fanout = FanoutNotifier(connection_manager, notifier)

    ledger = LedgerService(session_factory)
    lifecycle = ContestLifecycleManager(session_factory, ledger, fanout, clock=clock)
    app.state.session_factory = session_factory
    app.state.connection_manager = connection_manager
    app.state.ledger = ledger
    app.state.lifecycle = lifecycle
    app.state.voting = VoteAggregator(session_factory, ledger, fanout, clock=clock)
    app.state.escrow = EntryEscrow(session_factory, ledger, lifecycle, fanout)

    app.include_router(routes_health.router, prefix="/api/v1")
    app.include_router(routes_poll.router, prefix="/api/v1")
    app.include_router(routes_contest.router, prefix="/api/v1")
    app.include_router(routes_profile.router, prefix="/api/v1")
    app.include_router(routes_ws.router, prefix="/api/v1")

    @app.exception_handler(PollPeakError)
    async def pollpeak_error_handler(request, ex: PollPeakError):
        if ex.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {ex.message}")
        return JSONResponse(status_code=ex.status_code, content=ex.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request, ex: ValueError):
        return JSONResponse(status_code=422, content={"error": "invalid_request", "message": str(ex)})

    return app


app = create_app()
