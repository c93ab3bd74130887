from bson import ObjectId
from typing import Dict, Iterable, Optional, Set
import logging

logger = logging.getLogger(__name__)

# Users are active unless explicitly switched off
ACTIVE_USER_QUERY = {"isActive": {"$ne": False}}


def _id_candidates(user_ids: Iterable[str]) -> list:
    """Match ids stored either as ObjectId or as plain strings."""
    candidates = []
    for user_id in user_ids:
        candidates.append(user_id)
        if ObjectId.is_valid(user_id):
            candidates.append(ObjectId(user_id))
    return candidates


class UserDirectory:
    def __init__(self, collection):
        self.collection = collection

    def active_user_ids(self) -> Set[str]:
        return {str(user["_id"]) for user in self.collection.find(ACTIVE_USER_QUERY, {"_id": 1})}

    def filter_active(self, user_ids: Iterable[str]) -> Set[str]:
        user_ids = list(user_ids)
        if not user_ids:
            return set()
        query = {"_id": {"$in": _id_candidates(user_ids)}, **ACTIVE_USER_QUERY}
        return {str(user["_id"]) for user in self.collection.find(query, {"_id": 1})}

    def get_push_token(self, user_id: str) -> Optional[str]:
        user = self.collection.find_one(
            {"_id": {"$in": _id_candidates([user_id])}}, {"fcm_token": 1}
        )
        if not user:
            return None
        return user.get("fcm_token")

    def describe(self, user_ids: Iterable[str]) -> Dict[str, dict]:
        """Name and email of the known users among ``user_ids``, keyed by id."""
        user_ids = [user_id for user_id in dict.fromkeys(user_ids) if user_id]
        if not user_ids:
            return {}
        users = self.collection.find({"_id": {"$in": _id_candidates(user_ids)}}, {"name": 1, "email": 1})
        return {str(user["_id"]): {"name": user.get("name"), "email": user.get("email")} for user in users}

    def is_active(self, user_id: str) -> bool:
        return bool(self.filter_active([user_id]))
