from dotenv import load_dotenv
import os

load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "hotspotRetailDB")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

SECRET_KEY = os.getenv("SECRET_KEY")
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "1"))

# Firebase service account as raw JSON (Railway style deployments)
FIREBASE_SERVICE_ACCOUNT_KEY = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")

# Delivery tuning
PUSH_TIMEOUT_SECONDS = float(os.getenv("PUSH_TIMEOUT_SECONDS", "10"))
DELIVERY_MAX_WORKERS = int(os.getenv("DELIVERY_MAX_WORKERS", "8"))
# Grace period on top of the delivery deadline before a Sending claim is considered dead
SENDING_LEASE_MARGIN_SECONDS = float(os.getenv("SENDING_LEASE_MARGIN_SECONDS", "60"))

# Scheduler tuning
SCHEDULER_ENABLED = _get_bool("SCHEDULER_ENABLED", True)
SCHEDULER_POLL_INTERVAL = float(os.getenv("SCHEDULER_POLL_INTERVAL", "15"))
SCHEDULER_MAX_CONCURRENT = int(os.getenv("SCHEDULER_MAX_CONCURRENT", "4"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
