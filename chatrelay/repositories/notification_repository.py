from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from chatrelay.repositories.pagination import encode_cursor, keyset_before, to_object_id, with_str_id


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_ids", ASCENDING), ("time", DESCENDING)])
        await self.collection.create_index([("pending_dispatch", ASCENDING), ("time", ASCENDING)])

    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get(self, notification_id) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": to_object_id(notification_id, "notification")})
        return with_str_id(doc)

    async def add_reader(self, notification_id, user_id: str) -> bool:
        # matching on user_ids keeps read_by a subset of the recipients
        result = await self.collection.update_one(
            {"_id": to_object_id(notification_id, "notification"), "user_ids": user_id},
            {"$addToSet": {"read_by": user_id}},
        )
        return bool(result.matched_count)

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.collection.update_many(
            {"user_ids": user_id, "read_by": {"$nin": [user_id]}},
            {"$addToSet": {"read_by": user_id}},
        )
        return result.modified_count or 0

    def _user_query(self, user_id: str, include_read: bool) -> Dict[str, Any]:
        query: Dict[str, Any] = {"user_ids": user_id, "muted": {"$ne": True}}
        if not include_read:
            query["read_by"] = {"$nin": [user_id]}
        return query

    async def page_for_user(
        self,
        user_id: str,
        include_read: bool = True,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query = self._user_query(user_id, include_read)
        query.update(keyset_before("time", cursor))
        cur = self.collection.find(query).sort([("time", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = [with_str_id(it) for it in await cur.to_list(length=limit)]
        next_cursor = encode_cursor(items[-1], "time") if len(items) == limit else None
        return items, next_cursor

    async def iter_for_user(
        self,
        user_id: str,
        include_read: bool = True,
        batch_size: int = 100,
        cursor: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        while True:
            items, cursor = await self.page_for_user(user_id, include_read, limit=batch_size, cursor=cursor)
            for item in items:
                yield item
            if cursor is None:
                return

    async def unread_count(self, user_id: str) -> int:
        return await self.collection.count_documents(self._user_query(user_id, include_read=False))

    async def mark_dispatched(self, notification_id, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(notification_id, "notification")},
            {"$pull": {"pending_dispatch": user_id}},
        )

    async def set_muted(self, notification_id, muted: bool) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(notification_id, "notification")},
            {"$set": {"muted": muted}},
        )
        return bool(result.matched_count)

    async def list_undispatched(self, older_than: Optional[datetime] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"pending_dispatch.0": {"$exists": True}, "muted": {"$ne": True}}
        if older_than is not None:
            query["time"] = {"$lte": older_than}
        cur = self.collection.find(query).sort([("time", ASCENDING), ("_id", ASCENDING)]).limit(limit)
        return [with_str_id(it) for it in await cur.to_list(length=limit)]
