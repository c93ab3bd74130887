"""State machine: create, update, delete, cancel and send-now."""

from datetime import timedelta

import pytest
from bson import ObjectId

from app.schemas.notification import NotificationCreate, NotificationUpdate
from app.utils.errors import (
    AlreadyTerminal,
    Immutable,
    InvalidSchedule,
    NotificationNotFound,
    NotificationValidationError,
    NotScheduled,
)
from app.utils.timeutils import utcnow


def _payload(**overrides):
    data = {
        "title": "Maintenance window",
        "message": "The store will be closed on Sunday",
        "sendToAllUsers": True,
    }
    data.update(overrides)
    return NotificationCreate(**data)


def test_create_without_schedule_is_draft(lifecycle):
    notification = lifecycle.create(_payload(), "admin-1")

    assert notification["status"] == "Draft"
    assert notification["deliveryStatus"] == {"total": 0, "delivered": 0, "failed": 0, "pending": 0}
    assert notification["readBy"] == []
    assert notification["isActive"] is True
    assert notification["createdBy"] == "admin-1"
    assert lifecycle.should_send_immediately(_payload(), notification)


def test_save_as_draft_is_not_sent(lifecycle):
    payload = _payload(saveAsDraft=True)
    notification = lifecycle.create(payload, "admin-1")

    assert not lifecycle.should_send_immediately(payload, notification)


def test_create_with_future_schedule_is_scheduled(lifecycle, in_one_hour):
    notification = lifecycle.create(_payload(scheduledTime=in_one_hour), "admin-1")

    assert notification["status"] == "Scheduled"
    assert not lifecycle.should_send_immediately(_payload(scheduledTime=in_one_hour), notification)


def test_create_with_past_schedule_is_rejected(lifecycle, store):
    with pytest.raises(InvalidSchedule):
        lifecycle.create(_payload(scheduledTime=utcnow() - timedelta(minutes=1)), "admin-1")
    assert store.count({}) == 0


def test_create_with_past_expiry_is_rejected(lifecycle):
    with pytest.raises(NotificationValidationError):
        lifecycle.create(_payload(expiresAt=utcnow() - timedelta(days=1)), "admin-1")


def test_create_with_timezone_aware_schedule_is_stored_as_utc(lifecycle):
    from datetime import timezone

    aware = (utcnow() + timedelta(hours=2)).replace(tzinfo=timezone.utc).astimezone(timezone(timedelta(hours=8)))
    notification = lifecycle.create(_payload(scheduledTime=aware), "admin-1")

    assert notification["scheduledTime"].tzinfo is None
    assert notification["scheduledTime"] == aware.astimezone(timezone.utc).replace(tzinfo=None)


def test_send_to_all_clears_target_list(lifecycle, users):
    notification = lifecycle.create(_payload(targetUsers=[users["u1"]]), "admin-1")

    assert notification["targetUsers"] == []


def test_update_draft_to_scheduled_and_back(lifecycle, in_one_hour):
    notification = lifecycle.create(_payload(saveAsDraft=True), "admin-1")

    scheduled = lifecycle.update(notification["_id"], NotificationUpdate(scheduledTime=in_one_hour))
    assert scheduled["status"] == "Scheduled"

    unscheduled = lifecycle.update(notification["_id"], NotificationUpdate(scheduledTime=None))
    assert unscheduled["status"] == "Draft"
    assert unscheduled["scheduledTime"] is None


def test_update_content_keeps_status(lifecycle, in_one_hour):
    notification = lifecycle.create(_payload(scheduledTime=in_one_hour), "admin-1")

    updated = lifecycle.update(notification["_id"], NotificationUpdate(title="Updated title", priority="High"))

    assert updated["status"] == "Scheduled"
    assert updated["title"] == "Updated title"
    assert updated["priority"] == "High"


def test_update_with_past_schedule_is_rejected(lifecycle):
    notification = lifecycle.create(_payload(saveAsDraft=True), "admin-1")

    with pytest.raises(InvalidSchedule):
        lifecycle.update(notification["_id"], NotificationUpdate(scheduledTime=utcnow() - timedelta(hours=1)))


def test_update_cannot_leave_audience_empty(lifecycle):
    notification = lifecycle.create(_payload(saveAsDraft=True), "admin-1")

    with pytest.raises(NotificationValidationError):
        lifecycle.update(notification["_id"], NotificationUpdate(sendToAllUsers=False))


@pytest.mark.parametrize("status", ["Sent", "Failed", "Cancelled", "Sending"])
def test_update_and_delete_rejected_outside_draft_or_scheduled(lifecycle, make_notification, status):
    notification = make_notification(status=status)

    with pytest.raises(Immutable):
        lifecycle.update(notification["_id"], NotificationUpdate(title="Too late now"))
    with pytest.raises(Immutable):
        lifecycle.delete(notification["_id"])


def test_update_loses_race_against_concurrent_write(lifecycle, store, monkeypatch):
    notification = lifecycle.create(_payload(saveAsDraft=True), "admin-1")
    real_get = store.get

    def stale_get(notification_id):
        current = real_get(notification_id)
        # someone else sends it between our read and our write
        store.collection.update_one({"_id": current["_id"]}, {"$set": {"status": "Sent"}})
        return current

    monkeypatch.setattr(store, "get", stale_get)
    with pytest.raises(Immutable):
        lifecycle.update(notification["_id"], NotificationUpdate(title="Racing edit"))
    monkeypatch.undo()

    assert store.get(notification["_id"])["title"] == "Maintenance window"


def test_delete_scheduled_notification(lifecycle, store, in_one_hour):
    notification = lifecycle.create(_payload(scheduledTime=in_one_hour), "admin-1")

    lifecycle.delete(notification["_id"])

    assert store.get(notification["_id"]) is None
    assert store.find_due(in_one_hour + timedelta(minutes=1)) == []


def test_missing_notification_raises_not_found(lifecycle):
    missing = ObjectId()
    with pytest.raises(NotificationNotFound):
        lifecycle.get(missing)
    with pytest.raises(NotificationNotFound):
        lifecycle.delete(missing)
    with pytest.raises(NotificationNotFound):
        lifecycle.cancel(missing)


def test_invalid_id_is_a_validation_error(lifecycle):
    with pytest.raises(NotificationValidationError):
        lifecycle.get("not-an-object-id")


def test_cancel_scheduled(lifecycle, in_one_hour):
    notification = lifecycle.create(_payload(scheduledTime=in_one_hour), "admin-1")

    cancelled = lifecycle.cancel(notification["_id"])

    assert cancelled["status"] == "Cancelled"
    assert cancelled["cancelledAt"] is not None


def test_cancel_requires_scheduled_status(lifecycle):
    notification = lifecycle.create(_payload(saveAsDraft=True), "admin-1")

    with pytest.raises(NotScheduled):
        lifecycle.cancel(notification["_id"])


def test_send_now_from_scheduled(lifecycle, gateway, users, in_one_hour):
    notification = lifecycle.create(
        _payload(sendToAllUsers=False, targetUsers=[users["u1"]], scheduledTime=in_one_hour), "admin-1"
    )

    sent = lifecycle.send_now(notification["_id"])

    assert sent["status"] == "Sent"
    assert gateway.sent == [(users["u1"], str(notification["_id"]))]
    with pytest.raises(AlreadyTerminal):
        lifecycle.send_now(notification["_id"])


def test_failed_notification_cannot_be_resent(lifecycle, gateway, users):
    notification = lifecycle.create(_payload(sendToAllUsers=False, targetUsers=[users["u1"]]), "admin-1")
    gateway.failing.add(users["u1"])

    assert lifecycle.send_now(notification["_id"])["status"] == "Failed"
    with pytest.raises(AlreadyTerminal):
        lifecycle.send_now(notification["_id"])


def test_send_in_background_swallows_state_errors(lifecycle, make_notification):
    notification = make_notification(status="Cancelled")

    assert lifecycle.send_in_background(notification["_id"]) is None
