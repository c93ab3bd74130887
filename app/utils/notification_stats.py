from datetime import timedelta
from typing import Optional
from app.schemas.notification import NotificationStatus
from app.utils.notification_store import NotificationStore
from app.utils.timeutils import utcnow

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}

OVERVIEW_KEYS = (
    "total", "sent", "scheduled", "draft", "failed",
    "highPriority", "totalDelivered", "totalFailed", "totalReads",
)


def _breakdown(store: NotificationStore, match: dict, field: str) -> list:
    rows = store.aggregate([
        {"$match": match},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ])
    return [{"key": row["_id"], "count": row["count"]} for row in rows if row["count"] > 0]


class NotificationStats:
    def __init__(self, store: NotificationStore):
        self.store = store

    def stats(self, period: str = "30d", created_by: Optional[str] = None, now=None) -> dict:
        now = now or utcnow()
        start = now - timedelta(days=PERIOD_DAYS[period])
        match = {"createdAt": {"$gte": start, "$lte": now}}
        if created_by:
            match["createdBy"] = created_by

        rows = self.store.aggregate([
            {"$match": match},
            {"$project": {
                "status": 1,
                "delivered": "$deliveryStatus.delivered",
                "failed": "$deliveryStatus.failed",
                "reads": {"$size": "$readBy"},
            }},
            {"$group": {
                "_id": "$status",
                "count": {"$sum": 1},
                "delivered": {"$sum": "$delivered"},
                "failed": {"$sum": "$failed"},
                "reads": {"$sum": "$reads"},
            }},
        ])

        overview = dict.fromkeys(OVERVIEW_KEYS, 0)
        by_status = {}
        for row in rows:
            by_status[row["_id"]] = row["count"]
            overview["total"] += row["count"]
            overview["totalDelivered"] += row["delivered"]
            overview["totalFailed"] += row["failed"]
            overview["totalReads"] += row["reads"]

        overview["sent"] = by_status.get(NotificationStatus.sent.value, 0)
        overview["scheduled"] = by_status.get(NotificationStatus.scheduled.value, 0)
        overview["draft"] = by_status.get(NotificationStatus.draft.value, 0)
        overview["failed"] = by_status.get(NotificationStatus.failed.value, 0)
        overview["highPriority"] = self.store.count({**match, "priority": "High"})

        return {
            "overview": overview,
            "byType": _breakdown(self.store, match, "type"),
            "byPriority": _breakdown(self.store, match, "priority"),
            "byCategory": _breakdown(self.store, match, "category"),
            "period": period,
        }
