from typing import Optional


def _percentage(part: int, whole: int) -> int:
    if not whole:
        return 0
    return round(part / whole * 100)


def _delivery_status(notification) -> dict:
    delivery = notification.get("deliveryStatus") or {}
    return {
        "total": delivery.get("total", 0),
        "delivered": delivery.get("delivered", 0),
        "failed": delivery.get("failed", 0),
        "pending": delivery.get("pending", 0),
    }


def notification_helper(notification, viewer_id: Optional[str] = None) -> dict:
    delivery = _delivery_status(notification)
    read_by = notification.get("readBy", [])
    data = {
        "id": str(notification["_id"]),
        "title": notification["title"],
        "message": notification["message"],
        "type": notification["type"],
        "priority": notification["priority"],
        "category": notification.get("category", "General"),
        "icon": notification.get("icon", "bell"),
        "actionButton": notification.get("actionButton"),
        "sendToAllUsers": notification.get("sendToAllUsers", False),
        "targetUsers": notification.get("targetUsers", []),
        "scheduledTime": notification.get("scheduledTime"),
        "expiresAt": notification.get("expiresAt"),
        "status": notification["status"],
        "sentAt": notification.get("sentAt"),
        "cancelledAt": notification.get("cancelledAt"),
        "deliveryStatus": delivery,
        "readBy": read_by,
        "metadata": notification.get("metadata", {}),
        "isActive": notification.get("isActive", True),
        "createdBy": notification.get("createdBy"),
        "createdAt": notification.get("createdAt"),
        "updatedAt": notification.get("updatedAt"),
        # Derived
        "readCount": len(read_by),
        "readPercentage": _percentage(len(read_by), delivery["delivered"]),
        "deliverySuccessRate": _percentage(delivery["delivered"], delivery["total"]),
    }
    if viewer_id is not None:
        data["isRead"] = any(entry.get("user") == viewer_id for entry in read_by)
    return data


def new_notification_document(fields: dict, created_by: str, status: str, now) -> dict:
    """Build the document inserted for a freshly created notification."""
    document = dict(fields)
    if document.get("sendToAllUsers"):
        document["targetUsers"] = []
    document.update({
        "status": status,
        "sentAt": None,
        "cancelledAt": None,
        "deliveryStatus": {"total": 0, "delivered": 0, "failed": 0, "pending": 0},
        "readBy": [],
        "isActive": True,
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
    })
    return document


def referenced_user_ids(notifications, read_by: bool = False) -> set:
    """Ids of everyone a batch of notifications points at."""
    user_ids = set()
    for notification in notifications:
        if notification.get("createdBy"):
            user_ids.add(notification["createdBy"])
        user_ids.update(notification.get("targetUsers", []))
        if read_by:
            user_ids.update(entry.get("user") for entry in notification.get("readBy", []))
    return user_ids


def _person(user_id, people: dict) -> dict:
    person = people.get(user_id, {})
    return {"id": user_id, "name": person.get("name"), "email": person.get("email")}


def populate_people(data: dict, people: dict, fields=("createdBy", "targetUsers")) -> dict:
    """Replace user ids in a ``notification_helper`` dict with ``{id, name, email}``."""
    if "createdBy" in fields and data.get("createdBy") is not None:
        data["createdBy"] = _person(data["createdBy"], people)
    if "targetUsers" in fields:
        data["targetUsers"] = [_person(user_id, people) for user_id in data["targetUsers"]]
    if "readBy" in fields:
        data["readBy"] = [dict(entry, user=_person(entry.get("user"), people)) for entry in data["readBy"]]
    return data
