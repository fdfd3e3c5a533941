import re
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatrelay.models.message import DeliveryState, delivery_transition
from chatrelay.repositories.pagination import encode_cursor, keyset_before, to_object_id, utc_now


Party = Literal["sender", "receiver"]


def _normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None:
        doc["_id"] = str(doc.get("_id"))
        doc["conversation_id"] = str(doc.get("conversation_id"))
    return doc


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("sender", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("receiver", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("receiver", ASCENDING), ("read", ASCENDING)])

    async def save_message(
        self,
        conversation_id,
        sender: str,
        receiver: str,
        content: Optional[str],
        files: Optional[List[str]] = None,
        client_message_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "conversation_id": to_object_id(conversation_id, "conversation"),
            "sender": sender,
            "receiver": receiver,
            "content": content,
            "files": list(files or []),
            "created_at": created_at or utc_now(),
            "sent": True,
            "received": False,
            "read": False,
            "received_at": None,
            "read_at": None,
            "client_message_id": client_message_id,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _normalize(doc)

    async def get(self, message_id) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": to_object_id(message_id, "message")})
        return _normalize(doc)

    async def advance(self, message_id, receiver: str, target: DeliveryState) -> Optional[Dict[str, Any]]:
        """Move one message forward to ``target``; None when it was already there.

        Each step only matches while its flag is still False, so concurrent calls
        apply it once and never observe read without received.
        """
        oid = to_object_id(message_id, "message")
        changed = None
        steps: List[DeliveryState] = ["received", "read"] if target == "read" else [target]
        for step in steps:
            updated = await self.collection.find_one_and_update(
                {"_id": oid, "receiver": receiver, step: False},
                {"$set": delivery_transition(step, utc_now())},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                changed = updated
        return _normalize(changed)

    async def page_by_party(
        self,
        party: Party,
        user_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {party: user_id}
        query.update(keyset_before("created_at", cursor))
        cur = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = [_normalize(it) for it in await cur.to_list(length=limit)]
        next_cursor = encode_cursor(items[-1], "created_at") if len(items) == limit else None
        return items, next_cursor

    async def iter_by_party(
        self,
        party: Party,
        user_id: str,
        batch_size: int = 100,
        cursor: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        while True:
            items, cursor = await self.page_by_party(party, user_id, limit=batch_size, cursor=cursor)
            for item in items:
                yield item
            if cursor is None:
                return

    async def get_messages_by_conversation(
        self,
        conversation_id,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": to_object_id(conversation_id, "conversation")}
        query.update(keyset_before("created_at", cursor))
        cur = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = [_normalize(it) for it in await cur.to_list(length=limit)]
        next_cursor = encode_cursor(items[-1], "created_at") if len(items) == limit else None
        # return ascending chronological order for UI
        return list(reversed(items)), next_cursor

    async def get_unread(self, user_id: str, from_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"receiver": user_id, "read": False}
        if from_user_id:
            query["sender"] = from_user_id
        cursor = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        items = await cursor.to_list(length=1000)
        return [_normalize(it) for it in items]

    async def search(
        self,
        user_id: str,
        text: str,
        conversation_id=None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Newest messages the user sent or received whose content contains ``text``."""
        query: Dict[str, Any] = {
            "$or": [{"sender": user_id}, {"receiver": user_id}],
            "content": {"$regex": re.escape(text), "$options": "i"},
        }
        if conversation_id is not None:
            query["conversation_id"] = to_object_id(conversation_id, "conversation")
        cur = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        return [_normalize(it) for it in await cur.to_list(length=limit)]

    async def mark_conversation_read(self, conversation_id, receiver: str) -> int:
        query: Dict[str, Any] = {"conversation_id": to_object_id(conversation_id, "conversation"), "receiver": receiver}
        now = utc_now()
        await self.collection.update_many(
            {**query, "received": False},
            {"$set": delivery_transition("received", now)},
        )
        result = await self.collection.update_many(
            {**query, "read": False},
            {"$set": delivery_transition("read", now)},
        )
        return result.modified_count or 0
