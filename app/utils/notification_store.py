"""
Persistence boundary for notification documents.

Every state change goes through a single-document atomic MongoDB
operation so concurrent requests, the scheduler and parallel delivery
workers never overwrite each other:

- lifecycle moves use ``find_one_and_update`` filtered on the current status
- delivery counters use ``$inc``
- read markers use a ``$push`` filtered on the reader being absent
"""
from bson import ObjectId
from pymongo import ReturnDocument
from typing import Iterable, List, Optional, Tuple
from app.schemas.notification import NotificationStatus
from app.utils.errors import NotificationValidationError
from app.utils.timeutils import utcnow
import logging

logger = logging.getLogger(__name__)


def parse_object_id(notification_id) -> ObjectId:
    if isinstance(notification_id, ObjectId):
        return notification_id
    if not ObjectId.is_valid(str(notification_id)):
        raise NotificationValidationError("Invalid notification ID")
    return ObjectId(str(notification_id))


class NotificationStore:
    def __init__(self, collection):
        self.collection = collection

    # Plain reads

    def get(self, notification_id) -> Optional[dict]:
        return self.collection.find_one({"_id": parse_object_id(notification_id)})

    def find(self, query: dict, sort: List[Tuple[str, int]], skip: int = 0, limit: int = 20) -> List[dict]:
        cursor = self.collection.find(query).sort(sort).skip(skip).limit(limit)
        return list(cursor)

    def count(self, query: dict) -> int:
        return self.collection.count_documents(query)

    def aggregate(self, pipeline: list) -> List[dict]:
        return list(self.collection.aggregate(pipeline))

    def find_due(self, now) -> List[Tuple[ObjectId, object]]:
        """References (id, due time) of scheduled notifications whose time has come."""
        cursor = self.collection.find(
            {"status": NotificationStatus.scheduled.value, "scheduledTime": {"$lte": now}},
            {"_id": 1, "scheduledTime": 1},
        ).sort([("scheduledTime", 1)])
        return [(doc["_id"], doc["scheduledTime"]) for doc in cursor]

    def find_sending(self, claimed_before) -> List[dict]:
        """Records still held in ``Sending`` whose claim is older than ``claimed_before``."""
        return list(self.collection.find({
            "status": NotificationStatus.sending.value,
            "$or": [{"sendingAt": {"$lte": claimed_before}}, {"sendingAt": None}],
        }))

    # Writes

    def insert(self, document: dict) -> dict:
        result = self.collection.insert_one(document)
        document["_id"] = result.inserted_id
        return document

    def update_if_unchanged(self, notification_id, expected_status: str, expected_updated_at, changes: dict) -> Optional[dict]:
        """Optimistic check-and-set: apply ``changes`` only if nobody wrote in between."""
        changes = dict(changes, updatedAt=utcnow())
        return self.collection.find_one_and_update(
            {
                "_id": parse_object_id(notification_id),
                "status": expected_status,
                "updatedAt": expected_updated_at,
            },
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )

    def transition(self, notification_id, from_statuses: Iterable[str], to_status: str,
                   extra_filter: Optional[dict] = None, extra_set: Optional[dict] = None) -> Optional[dict]:
        """Move to ``to_status`` only if the current status is one of ``from_statuses``."""
        query = {"_id": parse_object_id(notification_id), "status": {"$in": list(from_statuses)}}
        if extra_filter:
            query.update(extra_filter)
        changes = {"status": to_status, "updatedAt": utcnow()}
        if extra_set:
            changes.update(extra_set)
        return self.collection.find_one_and_update(
            query, {"$set": changes}, return_document=ReturnDocument.AFTER
        )

    def delete_if_status(self, notification_id, statuses: Iterable[str]) -> bool:
        result = self.collection.delete_one(
            {"_id": parse_object_id(notification_id), "status": {"$in": list(statuses)}}
        )
        return result.deleted_count == 1

    # Delivery accounting

    def start_delivery(self, notification_id, total: int) -> None:
        self.collection.update_one(
            {"_id": parse_object_id(notification_id)},
            {"$set": {
                "deliveryStatus": {"total": total, "delivered": 0, "failed": 0, "pending": total},
                "updatedAt": utcnow(),
            }},
        )

    def record_attempt(self, notification_id, delivered: bool) -> None:
        outcome = "deliveryStatus.delivered" if delivered else "deliveryStatus.failed"
        self.collection.update_one(
            {"_id": parse_object_id(notification_id)},
            {"$inc": {outcome: 1, "deliveryStatus.pending": -1}, "$set": {"updatedAt": utcnow()}},
        )

    def fail_abandoned(self, notification: dict, now) -> Optional[dict]:
        """
        Close a ``Sending`` record whose dispatch went away.

        Recipients still pending move to ``failed`` in the same write. The
        filter pins the claim time and the pending count seen by the caller,
        so a dispatch that is still recording outcomes is left alone.
        """
        query = {
            "_id": notification["_id"],
            "status": NotificationStatus.sending.value,
            "sendingAt": notification.get("sendingAt"),
        }
        update = {"$set": {"status": NotificationStatus.failed.value, "sentAt": now, "updatedAt": now}}
        delivery = notification.get("deliveryStatus")
        if delivery:
            pending = delivery.get("pending", 0)
            query["deliveryStatus.pending"] = pending
            update["$inc"] = {"deliveryStatus.failed": pending, "deliveryStatus.pending": -pending}
        else:
            update["$set"]["deliveryStatus"] = {"total": 0, "delivered": 0, "failed": 0, "pending": 0}
        return self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)

    # Read markers

    def add_reader(self, notification_id, user_id: str, read_at) -> bool:
        """Append a read entry unless ``user_id`` already has one. True when appended."""
        result = self.collection.update_one(
            {"_id": parse_object_id(notification_id), "readBy.user": {"$ne": user_id}},
            {"$push": {"readBy": {"user": user_id, "readAt": read_at}}},
        )
        return result.modified_count == 1

    def add_reader_to_many(self, query: dict, user_id: str, read_at) -> int:
        query = dict(query)
        query["readBy.user"] = {"$ne": user_id}
        result = self.collection.update_many(
            query, {"$push": {"readBy": {"user": user_id, "readAt": read_at}}}
        )
        return result.modified_count
