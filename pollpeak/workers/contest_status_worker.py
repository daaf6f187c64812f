import asyncio
import logging
from pollpeak.core.config import settings
from pollpeak.services.contest_lifecycle import ContestLifecycleManager

logger = logging.getLogger(__name__)


class ContestStatusWorker:
    """Periodically applies due time driven phase changes to every live contest."""

    def __init__(self, lifecycle: ContestLifecycleManager, interval: float = None):
        self.lifecycle = lifecycle
        self.interval = interval or settings.CONTEST_SYNC_INTERVAL_SECONDS

    async def run_once(self) -> int:
        moved = await self.lifecycle.sync_due_contests()
        if moved:
            logger.info(f"contest status worker applied {moved} phase changes")
        return moved

    async def run(self):
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"contest status sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
