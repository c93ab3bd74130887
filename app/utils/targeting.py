from typing import Set
from app.utils.errors import EmptyAudience
from app.utils.user_directory import UserDirectory
import logging

logger = logging.getLogger(__name__)


class TargetingResolver:
    """Turns a notification's targeting fields into concrete recipient ids."""

    def __init__(self, directory: UserDirectory):
        self.directory = directory

    def resolve(self, notification: dict) -> Set[str]:
        if notification.get("sendToAllUsers"):
            audience = self.directory.active_user_ids()
        else:
            # set() dedupes; inactive or unknown users drop out
            audience = self.directory.filter_active(set(notification.get("targetUsers", [])))

        if not audience:
            logger.warning(f"Notification {notification.get('_id')} resolved to an empty audience")
            raise EmptyAudience(notification.get("_id"))
        return audience
