import asyncio
import logging
from pollpeak.core.config import settings
from pollpeak.services.voting import VoteAggregator

logger = logging.getLogger(__name__)


class RewardReconciliationWorker:
    """Settles vote rewards whose credit failed when the vote was cast."""

    def __init__(self, voting: VoteAggregator, interval: float = None, batch_size: int = 100):
        self.voting = voting
        self.interval = interval or settings.REWARD_RECONCILE_INTERVAL_SECONDS
        self.batch_size = batch_size

    async def run(self):
        while True:
            try:
                await self.voting.reconcile_pending_rewards(limit=self.batch_size)
            except Exception as e:
                logger.error(f"reward reconciliation failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
