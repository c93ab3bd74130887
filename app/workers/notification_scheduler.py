"""
Background worker that fires scheduled notifications once they are due.

The scheduler keeps no copy of the notifications it manages: each tick asks
the store for due (id, scheduledTime) pairs and hands every id to the
delivery engine, which re-reads and claims the record atomically. A
cancellation that lands first simply makes the claim a no-op, and several
scheduler instances can poll the same database safely. Each tick also
closes records a dead dispatch left behind in ``Sending``.
"""
import asyncio
import logging
from typing import Optional
from app.config import SCHEDULER_POLL_INTERVAL, SCHEDULER_MAX_CONCURRENT
from app.utils.delivery import DeliveryEngine
from app.utils.notification_store import NotificationStore
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class NotificationScheduler:
    def __init__(self, engine: DeliveryEngine, store: NotificationStore,
                 poll_interval: float = SCHEDULER_POLL_INTERVAL,
                 max_concurrent: int = SCHEDULER_MAX_CONCURRENT):
        """
        Args:
            poll_interval: Seconds between due checks; coarser means less store load
            max_concurrent: Dispatches allowed to run at the same time
        """
        self.engine = engine
        self.store = store
        self.poll_interval = poll_interval
        self.max_concurrent = max(1, max_concurrent)
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Run the polling loop until stop() is called"""
        self.is_running = True
        logger.info(f"🚀 Notification scheduler started (interval: {self.poll_interval}s)")

        while self.is_running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"❌ Error in notification scheduler loop: {str(e)}")
            await asyncio.sleep(self.poll_interval)

    def stop(self):
        self.is_running = False
        logger.info("🛑 Notification scheduler stopped")

    def launch(self) -> asyncio.Task:
        """Start the loop as a task owned by this scheduler."""
        self._task = asyncio.create_task(self.start())
        return self._task

    async def shutdown(self):
        self.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now=None) -> int:
        """Dispatch every notification due at ``now``. Returns how many fired."""
        now = now or utcnow()
        loop = asyncio.get_running_loop()
        reclaimed = await loop.run_in_executor(None, self.engine.reclaim_stale, now)
        if reclaimed:
            logger.warning(f"⚠️ Reclaimed {reclaimed} notifications abandoned in Sending")

        due = await loop.run_in_executor(None, self.store.find_due, now)
        if not due:
            return 0

        logger.info(f"⏰ {len(due)} scheduled notifications due")
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def fire(notification_id, scheduled_time):
            async with semaphore:
                try:
                    result = await loop.run_in_executor(None, self.engine.dispatch_due, notification_id, now)
                    return result is not None
                except Exception as e:
                    # Recorded on the notification itself; keep the loop alive
                    logger.error(f"❌ Scheduled dispatch of {notification_id} (due {scheduled_time}) failed: {str(e)}")
                    return False

        results = await asyncio.gather(*(fire(nid, due_at) for nid, due_at in due))
        return sum(1 for fired in results if fired)
