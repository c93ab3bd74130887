"""
Delivery engine: sends one notification to its whole audience.

A dispatch first claims the record by moving it to ``Sending`` with a
status-guarded atomic update, so at most one dispatch is ever in flight
per notification. Per-recipient attempts run on a bounded thread pool and
each outcome is persisted with ``$inc`` as soon as it is known, keeping
``total == delivered + failed + pending`` true after every write.

The claim is stamped with ``sendingAt``. A claim that outlives its delivery
deadline plus a margin belongs to a dispatch that died, and
``reclaim_stale`` closes it as ``Failed``.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeout
from datetime import timedelta
from typing import Optional
import math
import logging
from app.config import DELIVERY_MAX_WORKERS, PUSH_TIMEOUT_SECONDS, SENDING_LEASE_MARGIN_SECONDS
from app.schemas.notification import NotificationStatus, EDITABLE_STATUSES
from app.utils.errors import AlreadyTerminal, EmptyAudience, NotificationNotFound
from app.utils.notification_store import NotificationStore
from app.utils.targeting import TargetingResolver
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class DeliveryEngine:
    def __init__(self, store: NotificationStore, resolver: TargetingResolver, gateway,
                 max_workers: int = DELIVERY_MAX_WORKERS, push_timeout: float = PUSH_TIMEOUT_SECONDS,
                 lease_margin: float = SENDING_LEASE_MARGIN_SECONDS):
        self.store = store
        self.resolver = resolver
        self.gateway = gateway
        self.max_workers = max(1, max_workers)
        self.push_timeout = push_timeout
        self.lease_margin = lease_margin

    def dispatch(self, notification_id) -> dict:
        """Send a Draft or Scheduled notification now."""
        claimed = self.store.transition(
            notification_id,
            EDITABLE_STATUSES,
            NotificationStatus.sending.value,
            extra_set={"sendingAt": utcnow()},
        )
        if claimed is None:
            current = self.store.get(notification_id)
            if current is None:
                raise NotificationNotFound(notification_id)
            raise AlreadyTerminal(f"Notification cannot be sent from status {current['status']}")
        return self._deliver(claimed)

    def dispatch_due(self, notification_id, now=None) -> Optional[dict]:
        """Scheduler entry point. Returns None when someone else got there first."""
        now = now or utcnow()
        claimed = self.store.transition(
            notification_id,
            [NotificationStatus.scheduled.value],
            NotificationStatus.sending.value,
            extra_filter={"scheduledTime": {"$lte": now}},
            extra_set={"sendingAt": utcnow()},
        )
        if claimed is None:
            logger.info(f"Notification {notification_id} no longer due, skipping")
            return None
        return self._deliver(claimed)

    def delivery_deadline(self, recipients: int) -> float:
        """Seconds a dispatch to ``recipients`` users may spend on push calls."""
        if recipients <= 0:
            return 0
        workers = min(self.max_workers, recipients)
        return self.push_timeout * math.ceil(recipients / workers)

    def reclaim_stale(self, now=None) -> int:
        """Fail ``Sending`` records whose dispatch has not finished within its lease."""
        now = now or utcnow()
        reclaimed = 0
        for notification in self.store.find_sending(now - timedelta(seconds=self.lease_margin)):
            total = (notification.get("deliveryStatus") or {}).get("total", 0)
            lease = timedelta(seconds=self.delivery_deadline(total) + self.lease_margin)
            sending_at = notification.get("sendingAt")
            if sending_at is not None and sending_at > now - lease:
                continue
            if self.store.fail_abandoned(notification, now) is not None:
                reclaimed += 1
                logger.warning(
                    f"⚠️ Notification {notification['_id']} was stuck in Sending "
                    f"since {sending_at}, marked as Failed"
                )
        return reclaimed

    def _deliver(self, notification: dict) -> dict:
        notification_id = notification["_id"]
        try:
            try:
                audience = self.resolver.resolve(notification)
            except EmptyAudience:
                logger.warning(f"❌ Notification {notification_id} failed: no active recipients")
                return self._finish(
                    notification_id,
                    NotificationStatus.failed.value,
                    deliveryStatus={"total": 0, "delivered": 0, "failed": 0, "pending": 0},
                )

            self.store.start_delivery(notification_id, len(audience))
            logger.info(f"📤 Dispatching notification {notification_id} to {len(audience)} recipients")

            delivered = self._attempt_all(notification, sorted(audience))
            status = NotificationStatus.sent if delivered > 0 else NotificationStatus.failed
            logger.info(
                f"✅ Notification {notification_id} finished as {status.value}: "
                f"{delivered}/{len(audience)} delivered"
            )
            return self._finish(notification_id, status.value)
        except Exception:
            logger.exception(f"❌ Dispatch of notification {notification_id} crashed")
            self.store.transition(
                notification_id, [NotificationStatus.sending.value], NotificationStatus.failed.value
            )
            raise

    def _attempt_all(self, notification: dict, audience: list) -> int:
        notification_id = notification["_id"]
        workers = min(self.max_workers, len(audience))
        deadline = self.delivery_deadline(len(audience))
        delivered = 0
        recorded = set()

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="push")
        futures = {pool.submit(self._attempt, user_id, notification): user_id for user_id in audience}
        try:
            for future in as_completed(futures, timeout=deadline):
                ok = future.result()
                self.store.record_attempt(notification_id, ok)
                recorded.add(future)
                delivered += ok
        except FuturesTimeout:
            for future, user_id in futures.items():
                if future in recorded:
                    continue
                ok = future.done() and not future.cancelled() and future.result()
                if not ok and not future.done():
                    future.cancel()
                    logger.warning(f"Push to user {user_id} timed out for notification {notification_id}")
                self.store.record_attempt(notification_id, ok)
                delivered += ok
        finally:
            # A hung push call must not hold up the dispatch
            pool.shutdown(wait=False, cancel_futures=True)
        return delivered

    def _attempt(self, user_id: str, notification: dict) -> bool:
        try:
            return bool(self.gateway.send(user_id, notification))
        except Exception as e:
            logger.error(f"Push to user {user_id} raised: {str(e)}")
            return False

    def _finish(self, notification_id, status: str, **extra) -> dict:
        finished = self.store.transition(
            notification_id,
            [NotificationStatus.sending.value],
            status,
            extra_set={"sentAt": utcnow(), **extra},
        )
        return finished if finished is not None else self.store.get(notification_id)
