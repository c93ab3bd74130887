"""Shared fixtures: an in-memory MongoDB, a scripted push gateway and an API client."""

import os
import threading
from datetime import timedelta

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SCHEDULER_ENABLED"] = "false"

import mongomock
import pytest
from bson import ObjectId

from app.utils.delivery import DeliveryEngine
from app.utils.notification_lifecycle import NotificationLifecycle
from app.utils.notification_stats import NotificationStats
from app.utils.notification_store import NotificationStore
from app.utils.read_tracker import ReadTracker
from app.utils.targeting import TargetingResolver
from app.utils.timeutils import utcnow
from app.utils.user_directory import UserDirectory


class FakePushGateway:
    """Records pushes; users listed in ``failing`` fail and in ``hanging`` block."""

    def __init__(self):
        self.failing = set()
        self.raising = set()
        self.hanging = set()
        self.sent = []
        self.on_send = None
        self.release = threading.Event()
        self._lock = threading.Lock()

    def send(self, user_id, notification):
        if self.on_send:
            self.on_send(user_id, notification)
        if user_id in self.hanging:
            self.release.wait(5)
            return True
        if user_id in self.raising:
            raise ConnectionError("push gateway unreachable")
        with self._lock:
            self.sent.append((user_id, str(notification["_id"])))
        return user_id not in self.failing


@pytest.fixture()
def mongo_db():
    return mongomock.MongoClient()["test-notifications"]


@pytest.fixture()
def users(mongo_db):
    """Three active users and one deactivated user, keyed by short name."""
    ids = {}
    for name, active in (("u1", True), ("u2", True), ("u3", True), ("inactive", False)):
        user_id = ObjectId()
        mongo_db["users"].insert_one({
            "_id": user_id,
            "name": name,
            "email": f"{name}@example.com",
            "isActive": active,
            "fcm_token": f"token-{name}",
        })
        ids[name] = str(user_id)
    return ids


@pytest.fixture()
def store(mongo_db):
    return NotificationStore(mongo_db["notifications"])


@pytest.fixture()
def directory(mongo_db):
    return UserDirectory(mongo_db["users"])


@pytest.fixture()
def gateway():
    fake = FakePushGateway()
    yield fake
    fake.release.set()


@pytest.fixture()
def engine(store, directory, gateway):
    return DeliveryEngine(store, TargetingResolver(directory), gateway, max_workers=4, push_timeout=2)


@pytest.fixture()
def lifecycle(store, engine):
    return NotificationLifecycle(store, engine)


@pytest.fixture()
def tracker(store):
    return ReadTracker(store)


@pytest.fixture()
def stats(store):
    return NotificationStats(store)


@pytest.fixture()
def make_notification(store):
    """Insert a notification document directly, bypassing lifecycle checks."""

    def _make(**overrides):
        now = utcnow()
        document = {
            "title": "Weekly report",
            "message": "Your weekly report is ready",
            "type": "Info",
            "priority": "Medium",
            "category": "General",
            "icon": "bell",
            "sendToAllUsers": True,
            "targetUsers": [],
            "scheduledTime": None,
            "expiresAt": None,
            "status": "Sent",
            "sentAt": now,
            "deliveryStatus": {"total": 0, "delivered": 0, "failed": 0, "pending": 0},
            "readBy": [],
            "metadata": {"platform": "both", "sound": True, "vibration": False},
            "isActive": True,
            "createdBy": "admin-1",
            "createdAt": now,
            "updatedAt": now,
        }
        document.update(overrides)
        return store.insert(document)

    return _make


@pytest.fixture()
def client(store, directory, gateway):
    """API client wired to the in-memory database and the fake gateway."""
    from fastapi.testclient import TestClient

    from app.dependencies import services
    from main import app

    app.dependency_overrides[services.get_notification_store] = lambda: store
    app.dependency_overrides[services.get_user_directory] = lambda: directory
    app.dependency_overrides[services.get_push_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    from app.utils.auth_token import create_access_token

    def _headers(user_id="admin-1", role="admin"):
        token = create_access_token({"user_id": user_id, "email": f"{user_id}@example.com", "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def in_one_hour():
    return utcnow() + timedelta(hours=1)
