from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from chatrelay.errors import NotFoundError
from chatrelay.models.conversation import direct_key_for
from chatrelay.repositories.pagination import as_utc, encode_cursor, keyset_before, to_object_id, utc_now, with_str_id


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("members", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])
        # at most one active direct conversation per member pair
        await self.collection.create_index(
            [("direct_key", ASCENDING)],
            unique=True,
            partialFilterExpression={"is_group": False, "archived": False},
            name="direct_key_active_unique",
        )

    def new_document(
        self,
        members: List[str],
        is_group: bool,
        title: Optional[str] = None,
        description: Optional[str] = None,
        image: Optional[str] = None,
        admins: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        now = utc_now()
        return {
            "members": list(members),
            "blocked": [],
            "admins": list(admins or []),
            "is_group": is_group,
            "direct_key": None if is_group else direct_key_for(members[0], members[1]),
            "title": title,
            "description": description,
            "image": image,
            "archived": False,
            "locked": False,
            "last_message_at": now,
            "last_message_preview": None,
            "unread_counters": {m: 0 for m in members},
            "sender_clock": {},
            "version": 0,
            "created_at": now,
        }

    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get(self, conversation_id) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": to_object_id(conversation_id, "conversation")})
        return with_str_id(doc)

    async def find_active_direct(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one(
            {"direct_key": direct_key_for(user_a, user_b), "is_group": False, "archived": False}
        )
        return with_str_id(doc)

    async def find_latest_direct(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        cur = (
            self.collection.find({"direct_key": direct_key_for(user_a, user_b), "is_group": False})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .limit(1)
        )
        items = await cur.to_list(length=1)
        return with_str_id(items[0]) if items else None

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> Dict[str, Any]:
        active = await self.find_active_direct(user_a, user_b)
        if active:
            return active
        existing = await self.find_latest_direct(user_a, user_b)
        if existing:
            # archived conversations keep accepting writes
            return existing
        doc = self.new_document(sorted([user_a, user_b]), is_group=False)
        key = doc["direct_key"]
        try:
            created = await self.collection.find_one_and_update(
                {"direct_key": key, "is_group": False, "archived": False},
                {"$setOnInsert": doc},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # a concurrent first message created it
            created = await self.collection.find_one({"direct_key": key, "is_group": False, "archived": False})
        return with_str_id(created)

    async def compare_and_set(self, conversation_id, version: int, fields: Dict[str, Any]) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation"), "version": version},
            {"$set": fields, "$inc": {"version": 1}},
        )
        return bool(result.modified_count)

    async def add_blocked(self, conversation_id, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation")},
            {"$addToSet": {"blocked": user_id}, "$inc": {"version": 1}},
        )
        return bool(result.matched_count)

    async def remove_blocked(self, conversation_id, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation")},
            {"$pull": {"blocked": user_id}, "$inc": {"version": 1}},
        )
        return bool(result.matched_count)

    async def update_on_new_message(self, conversation_id, preview: str, receiver_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation")},
            {
                "$set": {
                    "last_message_at": utc_now(),
                    "last_message_preview": preview,
                },
                "$inc": {f"unread_counters.{receiver_id}": 1},
            },
        )

    async def next_message_stamp(self, conversation_id, sender: str) -> datetime:
        """Reserve a creation time for ``sender``'s next message in this conversation.

        The last stamp per sender lives in ``sender_clock`` and is only ever
        moved forward, so a sender's stamps strictly increase even when
        several sends land in the same millisecond.
        """
        oid = to_object_id(conversation_id, "conversation")
        field = f"sender_clock.{sender}"
        while True:
            doc = await self.collection.find_one({"_id": oid}, {field: 1})
            if doc is None:
                raise NotFoundError("Conversation not found")
            last = (doc.get("sender_clock") or {}).get(sender)
            stamp = utc_now()
            if last is not None and stamp <= as_utc(last):
                stamp = as_utc(last) + timedelta(milliseconds=1)
            # lost to a concurrent send when the clock already reached this stamp
            result = await self.collection.update_one(
                {"_id": oid, "$or": [{field: {"$exists": False}}, {field: {"$lt": stamp}}]},
                {"$set": {field: stamp}},
            )
            if result.modified_count:
                return stamp

    async def reset_unread(self, conversation_id, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id, "conversation")},
            {"$set": {f"unread_counters.{user_id}": 0}},
        )

    async def list_for_user(
        self,
        user_id: str,
        include_archived: bool = False,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {"members": user_id}
        if not include_archived:
            query["archived"] = False
        query.update(keyset_before("last_message_at", cursor))
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            with_str_id(it)
        next_cursor = encode_cursor(items[-1], "last_message_at") if len(items) == limit else None
        return items, next_cursor
