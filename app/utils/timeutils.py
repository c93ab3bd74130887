from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """Naive UTC now, the same shape pymongo hands back from the database."""
    return datetime.now(pytz.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(pytz.utc).replace(tzinfo=None)
