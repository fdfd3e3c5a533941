from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatrelay.models.device import PushPlatform
from chatrelay.repositories.pagination import utc_now, with_str_id

# most recently seen first; older registrations are usually dead installs
MAX_TOKENS_PER_USER = 20


class DeviceRepository:
    """Push targets registered by clients, one row per (user, platform, token)."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["devices"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("user_id", ASCENDING), ("platform", ASCENDING), ("token", ASCENDING)],
            unique=True,
        )
        await self.collection.create_index([("user_id", ASCENDING), ("last_seen_at", DESCENDING)])

    async def register(self, user_id: str, platform: PushPlatform, token: str) -> Dict[str, Any]:
        now = utc_now()
        doc = await self.collection.find_one_and_update(
            {"user_id": user_id, "platform": platform, "token": token},
            {"$set": {"last_seen_at": now}, "$setOnInsert": {"registered_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return with_str_id(doc)

    async def unregister(self, user_id: str, token: str) -> bool:
        result = await self.collection.delete_many({"user_id": user_id, "token": token})
        return bool(result.deleted_count)

    async def tokens_for(self, user_id: str, platform: Optional[PushPlatform] = None) -> List[str]:
        query: Dict[str, Any] = {"user_id": user_id}
        if platform:
            query["platform"] = platform
        cur = (
            self.collection.find(query, {"token": 1})
            .sort([("last_seen_at", DESCENDING), ("_id", DESCENDING)])
            .limit(MAX_TOKENS_PER_USER)
        )
        return [d["token"] for d in await cur.to_list(length=MAX_TOKENS_PER_USER)]
