"""FCM gateway glue; the Firebase SDK call itself is stubbed out."""

from bson import ObjectId

from app.utils import firebase
from app.utils.firebase import FirebasePushGateway, build_push_data


def _notification(**overrides):
    notification = {
        "_id": ObjectId(),
        "title": "Security update",
        "message": "Please update your password",
        "type": "Warning",
        "priority": "High",
        "category": "Security",
        "icon": "shield",
        "actionButton": {"text": "Update", "url": "https://example.com/account"},
        "metadata": {"platform": "mobile", "sound": False, "vibration": True},
    }
    notification.update(overrides)
    return notification


def test_push_data_is_all_strings():
    notification = _notification()

    data = build_push_data(notification)

    assert data["notification_id"] == str(notification["_id"])
    assert data["action_url"] == "https://example.com/account"
    assert data["sound"] == "false"
    assert data["vibration"] == "true"
    assert all(isinstance(value, str) for value in data.values())


def test_push_data_without_action_button():
    data = build_push_data(_notification(actionButton=None, icon=None))

    assert "action_url" not in data
    assert data["icon"] == "bell"


def test_gateway_uses_the_recipients_token(directory, users, monkeypatch):
    calls = []

    def fake_send(fcm_token, title, body, data=None, priority="high", sound=True):
        calls.append((fcm_token, title, priority, sound))
        return True

    monkeypatch.setattr(firebase, "send_push_notification", fake_send)

    assert FirebasePushGateway(directory).send(users["u1"], _notification()) is True
    assert calls == [("token-u1", "Security update", "high", False)]


def test_gateway_fails_without_token(directory, mongo_db, monkeypatch):
    user_id = ObjectId()
    mongo_db["users"].insert_one({"_id": user_id, "isActive": True})
    monkeypatch.setattr(firebase, "send_push_notification", lambda *args, **kwargs: True)

    assert FirebasePushGateway(directory).send(str(user_id), _notification()) is False


def test_missing_parameters_short_circuit():
    assert firebase.send_push_notification(None, "title", "body") is False
