from typing import List, Optional, Tuple
import logging
from app.schemas.notification import NotificationStatus
from app.utils.errors import NotificationNotFound
from app.utils.notification_store import NotificationStore
from app.utils.timeutils import utcnow
from app.utils.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def visible_to_user_query(user_id: str, now) -> dict:
    """Sent, active, unexpired notifications whose audience includes ``user_id``."""
    return {
        "status": NotificationStatus.sent.value,
        "isActive": True,
        "$and": [
            {"$or": [{"sendToAllUsers": True}, {"targetUsers": user_id}]},
            {"$or": [{"expiresAt": None}, {"expiresAt": {"$gt": now}}]},
        ],
    }


class ReadTracker:
    """
    Per-user read state.

    With a ``directory``, inbox, unread count and mark-all-read cover only
    users the directory reports active, matching the audience a dispatch
    resolves. Without one every caller is taken as active.
    """

    def __init__(self, store: NotificationStore, directory: Optional[UserDirectory] = None):
        self.store = store
        self.directory = directory

    def _in_audience(self, user_id: str) -> bool:
        return self.directory is None or self.directory.is_active(user_id)

    def mark_read(self, notification_id, user_id: str, now=None) -> dict:
        appended = self.store.add_reader(notification_id, user_id, now or utcnow())
        notification = self.store.get(notification_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        if appended:
            logger.debug(f"User {user_id} read notification {notification_id}")
        return notification

    def mark_all_read(self, user_id: str, now=None) -> int:
        if not self._in_audience(user_id):
            return 0
        now = now or utcnow()
        marked = self.store.add_reader_to_many(visible_to_user_query(user_id, now), user_id, now)
        logger.info(f"Marked {marked} notifications as read for user {user_id}")
        return marked

    def unread_count(self, user_id: str, now=None) -> int:
        if not self._in_audience(user_id):
            return 0
        query = visible_to_user_query(user_id, now or utcnow())
        query["readBy.user"] = {"$ne": user_id}
        return self.store.count(query)

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 20, unread_only: bool = False,
                      type: Optional[str] = None, priority: Optional[str] = None,
                      now=None) -> Tuple[List[dict], int]:
        if not self._in_audience(user_id):
            return [], 0
        query = visible_to_user_query(user_id, now or utcnow())
        if unread_only:
            query["readBy.user"] = {"$ne": user_id}
        if type:
            query["type"] = type
        if priority:
            query["priority"] = priority

        notifications = self.store.find(
            query, [("createdAt", -1), ("_id", -1)], skip=(page - 1) * limit, limit=limit
        )
        return notifications, self.store.count(query)
