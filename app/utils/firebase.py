import firebase_admin
from firebase_admin import credentials, messaging
import os
import json
import logging
from app.config import FIREBASE_SERVICE_ACCOUNT_KEY, PUSH_TIMEOUT_SECONDS
from app.utils.user_directory import UserDirectory

logger = logging.getLogger(__name__)

PRIORITY_TO_ANDROID = {"High": "high", "Medium": "normal", "Low": "normal"}


def init_firebase():
    """Initialize the Firebase Admin SDK once, on first use."""
    if firebase_admin._apps:
        return

    if FIREBASE_SERVICE_ACCOUNT_KEY:
        # Railway style deployment: the JSON lives in an env variable
        cred = credentials.Certificate(json.loads(FIREBASE_SERVICE_ACCOUNT_KEY))
        logger.info("Firebase initialized with environment variable")
    else:
        BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        cred_path = os.path.join(BASE_DIR, "serviceAccountKey.json")
        if not os.path.exists(cred_path):
            logger.error(f"Service account key not found at: {cred_path}")
            raise FileNotFoundError(f"Service account key is not found at: {cred_path}")
        cred = credentials.Certificate(cred_path)
        logger.info("Firebase initialized with local service account file")

    firebase_admin.initialize_app(cred, {"httpTimeout": PUSH_TIMEOUT_SECONDS})
    logger.info("Firebase Admin SDK is initialized successfully")


def build_push_data(notification: dict) -> dict:
    """FCM data payloads only accept string values."""
    action = notification.get("actionButton") or {}
    metadata = notification.get("metadata") or {}
    data = {
        "notification_id": str(notification["_id"]),
        "type": notification.get("type", "Info"),
        "priority": notification.get("priority", "Medium"),
        "category": notification.get("category", "General"),
        "icon": notification.get("icon") or "bell",
        "sound": str(metadata.get("sound", True)).lower(),
        "vibration": str(metadata.get("vibration", False)).lower(),
    }
    if action.get("url"):
        data["action_url"] = action["url"]
    if action.get("text"):
        data["action_text"] = action["text"]
    return data


def send_push_notification(fcm_token, title, body, data=None, priority="high", sound=True):
    """
    Send the push notification via FCM (Firebase Cloud Messaging)
    with a channel for heads-up display.
    """
    try:
        if not fcm_token or not title or not body:
            logger.error("Missing required parameters for notification")
            return False

        init_firebase()

        android_notification = messaging.AndroidNotification(
            title=title,
            body=body,
            sound="default" if sound else None,
            channel_id="high_priority_channel",  # Must match frontend
        )

        android_config = messaging.AndroidConfig(
            priority=priority,
            notification=android_notification,
        )

        message = messaging.Message(
            token=fcm_token,
            notification=messaging.Notification(title=title, body=body),
            android=android_config,
            data=data or {},
        )

        response = messaging.send(message)
        logger.debug(f"✅ Successfully sent message: {response}")
        return True

    except messaging.UnregisteredError:
        logger.error(f"❌ FCM token is unregistered: {fcm_token}")
        return False
    except messaging.SenderIdMismatchError:
        logger.error(f"❌ FCM token sender ID mismatch: {fcm_token}")
        return False
    except Exception as e:
        logger.error(f"❌ Failed to send push notification: {str(e)}")
        return False


class FirebasePushGateway:
    """Delivers one notification to one user through FCM."""

    def __init__(self, directory: UserDirectory):
        self.directory = directory

    def send(self, user_id: str, notification: dict) -> bool:
        fcm_token = self.directory.get_push_token(user_id)
        if not fcm_token:
            logger.warning(f"No FCM token for user {user_id}")
            return False

        metadata = notification.get("metadata") or {}
        return send_push_notification(
            fcm_token,
            notification["title"],
            notification["message"],
            data=build_push_data(notification),
            priority=PRIORITY_TO_ANDROID.get(notification.get("priority"), "normal"),
            sound=metadata.get("sound", True),
        )
