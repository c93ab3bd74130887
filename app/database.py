from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from app.config import MONGO_URI, MONGO_DB_NAME, MONGO_TIMEOUT_MS
import logging

logger = logging.getLogger(__name__)

client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)

db = client[MONGO_DB_NAME]
notifications_collection = db["notifications"]
user_collection = db["users"]


def ping_database() -> bool:
    """Check that MongoDB answers; called once on startup."""
    try:
        client.admin.command("ping")
        logger.info("✅ MongoDB connected")
        return True
    except PyMongoError as e:
        logger.error(f"❌ MongoDB connection error: {e}")
        return False


def ensure_indexes(collection=notifications_collection):
    collection.create_index([("status", ASCENDING), ("scheduledTime", ASCENDING)])
    collection.create_index([("targetUsers", ASCENDING)])
    collection.create_index([("sendToAllUsers", ASCENDING)])
    collection.create_index([("createdBy", ASCENDING)])
    collection.create_index([("createdAt", DESCENDING)])
