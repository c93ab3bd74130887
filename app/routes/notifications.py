from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from typing import Optional
import re
import logging
from app.dependencies.auth import get_current_user
from app.dependencies.services import (
    get_lifecycle,
    get_notification_store,
    get_read_tracker,
    get_stats,
    get_user_directory,
)
from app.models.notification import notification_helper, populate_people, referenced_user_ids
from app.schemas.notification import (
    NotificationCategory,
    NotificationCreate,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    NotificationUpdate,
    StatsPeriod,
)
from app.utils.notification_lifecycle import NotificationLifecycle
from app.utils.notification_stats import NotificationStats
from app.utils.notification_store import NotificationStore
from app.utils.pagination import build_pagination
from app.utils.read_tracker import ReadTracker
from app.utils.user_directory import UserDirectory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

SORTABLE_FIELDS = ("createdAt", "updatedAt", "scheduledTime", "title", "priority", "type", "status", "category")


def _envelope(message: str, data=None) -> dict:
    return {"success": True, "message": message, "data": data}


def _with_people(notifications, directory: UserDirectory, fields=("createdBy", "targetUsers"),
                 viewer_id: Optional[str] = None) -> list:
    """Helper dicts with user ids swapped for name and email."""
    people = directory.describe(referenced_user_ids(notifications, read_by="readBy" in fields))
    return [
        populate_people(notification_helper(n, viewer_id=viewer_id), people, fields)
        for n in notifications
    ]


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=dict)
def create_notification(
    payload: NotificationCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
):
    """Create a notification; unscheduled ones go out right after the response."""
    notification = lifecycle.create(payload, current_user["user_id"])
    if lifecycle.should_send_immediately(payload, notification):
        background_tasks.add_task(lifecycle.send_in_background, notification["_id"])
    return _envelope("Notification created successfully", notification_helper(notification))


@router.get("/", response_model=dict)
def get_all_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[NotificationType] = None,
    priority: Optional[NotificationPriority] = None,
    status: Optional[NotificationStatus] = None,
    category: Optional[NotificationCategory] = None,
    sendToAllUsers: Optional[bool] = None,
    createdBy: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = Query("createdAt"),
    sortOrder: str = Query("desc", pattern="^(asc|desc)$"),
    current_user: dict = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
    directory: UserDirectory = Depends(get_user_directory),
):
    query = {}
    if type:
        query["type"] = type.value
    if priority:
        query["priority"] = priority.value
    if status:
        query["status"] = status.value
    if category:
        query["category"] = category.value
    if sendToAllUsers is not None:
        query["sendToAllUsers"] = sendToAllUsers
    if createdBy:
        query["createdBy"] = createdBy
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"message": pattern}]

    sort_field = sortBy if sortBy in SORTABLE_FIELDS else "createdAt"
    direction = 1 if sortOrder == "asc" else -1

    notifications = store.find(query, [(sort_field, direction), ("_id", direction)],
                               skip=(page - 1) * limit, limit=limit)
    total = store.count(query)

    return _envelope("Notifications retrieved successfully", {
        "notifications": _with_people(notifications, directory),
        "pagination": build_pagination(page, limit, total),
    })


@router.get("/user", response_model=dict)
def get_user_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unreadOnly: bool = False,
    type: Optional[NotificationType] = None,
    priority: Optional[NotificationPriority] = None,
    current_user: dict = Depends(get_current_user),
    tracker: ReadTracker = Depends(get_read_tracker),
    directory: UserDirectory = Depends(get_user_directory),
):
    """Inbox of the calling user"""
    user_id = current_user["user_id"]
    notifications, total = tracker.list_for_user(
        user_id,
        page=page,
        limit=limit,
        unread_only=unreadOnly,
        type=type.value if type else None,
        priority=priority.value if priority else None,
    )
    return _envelope("User notifications retrieved successfully", {
        "notifications": _with_people(notifications, directory, fields=("createdBy",), viewer_id=user_id),
        "unreadCount": tracker.unread_count(user_id),
        "pagination": build_pagination(page, limit, total),
    })


@router.get("/stats", response_model=dict)
def get_notification_stats(
    period: StatsPeriod = StatsPeriod.month,
    createdBy: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    stats: NotificationStats = Depends(get_stats),
):
    return _envelope(
        "Notification statistics retrieved successfully",
        stats.stats(period.value, created_by=createdBy),
    )


@router.get("/scheduled", response_model=dict)
def get_scheduled_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    store: NotificationStore = Depends(get_notification_store),
    directory: UserDirectory = Depends(get_user_directory),
):
    query = {"status": NotificationStatus.scheduled.value}
    notifications = store.find(query, [("scheduledTime", 1), ("_id", 1)], skip=(page - 1) * limit, limit=limit)
    total = store.count(query)
    return _envelope("Scheduled notifications retrieved successfully", {
        "notifications": _with_people(notifications, directory),
        "pagination": build_pagination(page, limit, total),
    })


@router.patch("/read-all", response_model=dict)
def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    tracker: ReadTracker = Depends(get_read_tracker),
):
    marked = tracker.mark_all_read(current_user["user_id"])
    return _envelope(f"{marked} notifications marked as read", {"markedCount": marked})


@router.get("/{notification_id}", response_model=dict)
def get_notification(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
    directory: UserDirectory = Depends(get_user_directory),
):
    notification = lifecycle.get(notification_id)
    data = _with_people([notification], directory, fields=("createdBy", "targetUsers", "readBy"))[0]
    return _envelope("Notification retrieved successfully", data)


@router.put("/{notification_id}", response_model=dict)
def update_notification(
    notification_id: str,
    payload: NotificationUpdate,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
    directory: UserDirectory = Depends(get_user_directory),
):
    notification = lifecycle.update(notification_id, payload)
    data = _with_people([notification], directory)[0]
    return _envelope("Notification updated successfully", data)


@router.delete("/{notification_id}", response_model=dict)
def delete_notification(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
):
    notification = lifecycle.delete(notification_id)
    return _envelope("Notification deleted successfully", notification_helper(notification))


@router.patch("/{notification_id}/read", response_model=dict)
def mark_notification_read(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    tracker: ReadTracker = Depends(get_read_tracker),
):
    user_id = current_user["user_id"]
    notification = tracker.mark_read(notification_id, user_id)
    return _envelope("Notification marked as read", notification_helper(notification, viewer_id=user_id))


@router.post("/{notification_id}/send", response_model=dict)
async def send_notification_now(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
):
    # Delivery blocks on the push gateway; keep it off the event loop
    notification = await run_in_threadpool(lifecycle.send_now, notification_id)
    if notification["status"] == NotificationStatus.sent.value:
        message = "Notification sent successfully"
    else:
        message = "Notification could not be delivered to any recipient"
    return _envelope(message, notification_helper(notification))


@router.patch("/{notification_id}/cancel", response_model=dict)
def cancel_scheduled_notification(
    notification_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: NotificationLifecycle = Depends(get_lifecycle),
):
    notification = lifecycle.cancel(notification_id)
    return _envelope("Scheduled notification cancelled successfully", notification_helper(notification))
