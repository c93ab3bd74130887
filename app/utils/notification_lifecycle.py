"""
Notification lifecycle: create, edit, delete, cancel and send-now.

    Draft ──(future scheduledTime)──> Scheduled ──(cancel)──> Cancelled
      │                                   │
      └──────(send now / timer)──> Sending ──> Sent | Failed

Only Draft and Scheduled notifications can be edited or deleted. Every
transition is a status-guarded atomic write, so a request racing the
scheduler either wins cleanly or sees the other side's result.
"""
from typing import Optional
import logging
from app.models.notification import new_notification_document
from app.schemas.notification import (
    NotificationCreate,
    NotificationStatus,
    NotificationUpdate,
    EDITABLE_STATUSES,
)
from app.utils.delivery import DeliveryEngine
from app.utils.errors import (
    Immutable,
    InvalidSchedule,
    NotificationError,
    NotificationNotFound,
    NotificationValidationError,
    NotScheduled,
)
from app.utils.notification_store import NotificationStore
from app.utils.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _check_schedule(scheduled_time, now):
    if scheduled_time is not None and scheduled_time <= now:
        raise InvalidSchedule("Scheduled time must be in the future")


def _check_expiry(expires_at, now):
    if expires_at is not None and expires_at <= now:
        raise NotificationValidationError("Expiry time must be in the future")


class NotificationLifecycle:
    def __init__(self, store: NotificationStore, engine: DeliveryEngine):
        self.store = store
        self.engine = engine

    def get(self, notification_id) -> dict:
        notification = self.store.get(notification_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        return notification

    def create(self, payload: NotificationCreate, created_by: str, now=None) -> dict:
        now = now or utcnow()
        fields = payload.model_dump(exclude={"saveAsDraft"}, exclude_none=True)
        fields["scheduledTime"] = to_naive_utc(payload.scheduledTime)
        fields["expiresAt"] = to_naive_utc(payload.expiresAt)
        _check_schedule(fields["scheduledTime"], now)
        _check_expiry(fields["expiresAt"], now)

        status = NotificationStatus.scheduled if fields["scheduledTime"] else NotificationStatus.draft
        notification = self.store.insert(new_notification_document(fields, created_by, status.value, now))
        logger.info(f"Notification {notification['_id']} created as {status.value} by {created_by}")
        return notification

    def should_send_immediately(self, payload: NotificationCreate, notification: dict) -> bool:
        return notification["status"] == NotificationStatus.draft.value and not payload.saveAsDraft

    def update(self, notification_id, payload: NotificationUpdate, now=None) -> dict:
        now = now or utcnow()
        current = self.get(notification_id)
        if current["status"] not in EDITABLE_STATUSES:
            raise Immutable(f"Notification in status {current['status']} can no longer be modified")

        changes = payload.model_dump(exclude_unset=True)
        if "scheduledTime" in changes:
            changes["scheduledTime"] = to_naive_utc(changes["scheduledTime"])
            _check_schedule(changes["scheduledTime"], now)
        if "expiresAt" in changes:
            changes["expiresAt"] = to_naive_utc(changes["expiresAt"])
            _check_expiry(changes["expiresAt"], now)

        merged = {**current, **changes}
        if merged.get("sendToAllUsers"):
            changes["targetUsers"] = []
        elif not merged.get("targetUsers"):
            raise NotificationValidationError("Target users are required when not sending to all users")

        if "scheduledTime" in changes:
            changes["status"] = (
                NotificationStatus.scheduled.value if changes["scheduledTime"] else NotificationStatus.draft.value
            )

        updated = self.store.update_if_unchanged(
            notification_id, current["status"], current["updatedAt"], changes
        )
        if updated is None:
            # Lost a race; report whatever the record turned into
            latest = self.get(notification_id)
            raise Immutable(f"Notification changed concurrently (now {latest['status']}), please retry")
        logger.info(f"Notification {notification_id} updated ({', '.join(sorted(changes))})")
        return updated

    def delete(self, notification_id) -> dict:
        current = self.get(notification_id)
        if current["status"] not in EDITABLE_STATUSES or not self.store.delete_if_status(
            notification_id, EDITABLE_STATUSES
        ):
            latest = self.store.get(notification_id)
            if latest is None:
                raise NotificationNotFound(notification_id)
            raise Immutable(f"Notification in status {latest['status']} can no longer be deleted")
        logger.info(f"Notification {notification_id} deleted")
        return current

    def cancel(self, notification_id) -> dict:
        cancelled = self.store.transition(
            notification_id,
            [NotificationStatus.scheduled.value],
            NotificationStatus.cancelled.value,
            extra_set={"cancelledAt": utcnow()},
        )
        if cancelled is None:
            self.get(notification_id)
            raise NotScheduled("Only scheduled notifications can be cancelled")
        logger.info(f"Scheduled notification {notification_id} cancelled")
        return cancelled

    def send_now(self, notification_id) -> dict:
        return self.engine.dispatch(notification_id)

    def send_in_background(self, notification_id) -> Optional[dict]:
        """Background-task variant of send_now: errors are logged, not raised."""
        try:
            return self.engine.dispatch(notification_id)
        except NotificationError as e:
            logger.info(f"Immediate send of {notification_id} skipped: {e.message}")
        except Exception as e:
            logger.error(f"❌ Immediate send of {notification_id} failed: {str(e)}")
        return None
