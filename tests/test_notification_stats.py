"""Windowed statistics over notifications."""

from datetime import timedelta

from app.utils.timeutils import utcnow


def _as_dict(breakdown):
    return {entry["key"]: entry["count"] for entry in breakdown}


def test_overview_and_breakdowns(stats, make_notification):
    now = utcnow()
    make_notification(status="Sent", priority="High", type="Warning", category="Security",
                      deliveryStatus={"total": 3, "delivered": 2, "failed": 1, "pending": 0},
                      readBy=[{"user": "a", "readAt": now}, {"user": "b", "readAt": now}])
    make_notification(status="Failed", priority="High", type="Error", category="System",
                      deliveryStatus={"total": 2, "delivered": 0, "failed": 2, "pending": 0})
    make_notification(status="Scheduled", type="Info", scheduledTime=now + timedelta(days=1))
    make_notification(status="Draft", type="Info")

    result = stats.stats("30d", now=now + timedelta(seconds=1))

    assert result["period"] == "30d"
    assert result["overview"] == {
        "total": 4,
        "sent": 1,
        "scheduled": 1,
        "draft": 1,
        "failed": 1,
        "highPriority": 2,
        "totalDelivered": 2,
        "totalFailed": 3,
        "totalReads": 2,
    }
    assert _as_dict(result["byType"]) == {"Warning": 1, "Error": 1, "Info": 2}
    assert _as_dict(result["byPriority"]) == {"High": 2, "Medium": 2}
    # no zero-filled entries for unused categories
    assert _as_dict(result["byCategory"]) == {"Security": 1, "System": 1, "General": 2}


def test_window_excludes_older_notifications(stats, make_notification):
    now = utcnow()
    make_notification(createdAt=now - timedelta(days=3))
    make_notification(createdAt=now - timedelta(days=20))
    make_notification(createdAt=now - timedelta(days=60))
    make_notification(createdAt=now - timedelta(days=120))

    assert stats.stats("7d", now=now)["overview"]["total"] == 1
    assert stats.stats("30d", now=now)["overview"]["total"] == 2
    assert stats.stats("90d", now=now)["overview"]["total"] == 3


def test_filter_by_creator(stats, make_notification):
    now = utcnow()
    make_notification(createdBy="admin-1")
    make_notification(createdBy="admin-2")

    result = stats.stats("7d", created_by="admin-2", now=now + timedelta(seconds=1))

    assert result["overview"]["total"] == 1


def test_empty_window(stats):
    result = stats.stats("7d")

    assert set(result["overview"].values()) == {0}
    assert result["byType"] == []
    assert result["byPriority"] == []
    assert result["byCategory"] == []
