from fastapi import Depends
from app.database import notifications_collection, user_collection
from app.utils.delivery import DeliveryEngine
from app.utils.firebase import FirebasePushGateway
from app.utils.notification_lifecycle import NotificationLifecycle
from app.utils.notification_stats import NotificationStats
from app.utils.notification_store import NotificationStore
from app.utils.read_tracker import ReadTracker
from app.utils.targeting import TargetingResolver
from app.utils.user_directory import UserDirectory


def get_notification_store() -> NotificationStore:
    return NotificationStore(notifications_collection)


def get_user_directory() -> UserDirectory:
    return UserDirectory(user_collection)


def get_push_gateway(directory: UserDirectory = Depends(get_user_directory)):
    return FirebasePushGateway(directory)


def build_delivery_engine(store: NotificationStore, directory: UserDirectory, gateway) -> DeliveryEngine:
    return DeliveryEngine(store, TargetingResolver(directory), gateway)


def get_delivery_engine(
    store: NotificationStore = Depends(get_notification_store),
    directory: UserDirectory = Depends(get_user_directory),
    gateway=Depends(get_push_gateway),
) -> DeliveryEngine:
    return build_delivery_engine(store, directory, gateway)


def get_lifecycle(
    store: NotificationStore = Depends(get_notification_store),
    engine: DeliveryEngine = Depends(get_delivery_engine),
) -> NotificationLifecycle:
    return NotificationLifecycle(store, engine)


def get_read_tracker(
    store: NotificationStore = Depends(get_notification_store),
    directory: UserDirectory = Depends(get_user_directory),
) -> ReadTracker:
    return ReadTracker(store, directory)


def get_stats(store: NotificationStore = Depends(get_notification_store)) -> NotificationStats:
    return NotificationStats(store)
