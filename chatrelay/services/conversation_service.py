import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from chatrelay.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from chatrelay.repositories.conversation_repository import ConversationRepository

logger = logging.getLogger(__name__)

PATCHABLE = {"title", "description", "image", "add_members", "remove_members", "archived", "locked"}
CAS_ATTEMPTS = 5


def _unique(members: Iterable[str]) -> List[str]:
    out: List[str] = []
    for m in members:
        if m and m not in out:
            out.append(m)
    return out


class ConversationService:

    def __init__(self, conversation_repo: ConversationRepository) -> None:
        self._conversation_repo = conversation_repo

    async def create_conversation(
        self,
        members: Iterable[str],
        is_group: bool = False,
        title: Optional[str] = None,
        description: Optional[str] = None,
        image: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        unique = _unique(members)
        if len(unique) < 2:
            raise ValidationError("A conversation needs at least two distinct members")
        if not is_group and len(unique) != 2:
            raise ValidationError("A direct conversation has exactly two members")
        if created_by is not None and created_by not in unique:
            raise ForbiddenError("Creator must be a member")

        if not is_group:
            existing = await self._conversation_repo.find_active_direct(unique[0], unique[1])
            if existing:
                raise ConflictError("Direct conversation already exists", existing_id=existing["_id"])
            doc = self._conversation_repo.new_document(sorted(unique), is_group=False)
        else:
            admins = [created_by] if created_by else []
            doc = self._conversation_repo.new_document(
                unique, is_group=True, title=title, description=description, image=image, admins=admins
            )
        try:
            created = await self._conversation_repo.insert(doc)
        except DuplicateKeyError:
            existing = await self._conversation_repo.find_active_direct(unique[0], unique[1])
            raise ConflictError(
                "Direct conversation already exists", existing_id=existing["_id"] if existing else None
            )
        logger.info("conversation created", extra={"conversation_id": created["_id"], "is_group": is_group})
        return created

    async def find_or_create_direct(self, user_a: str, user_b: str) -> Dict[str, Any]:
        if not user_a or not user_b or user_a == user_b:
            raise ValidationError("A direct conversation needs two distinct members")
        return await self._conversation_repo.get_or_create_one_to_one(user_a, user_b)

    async def get_conversation(self, conversation_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        doc = await self._conversation_repo.get(conversation_id)
        if not doc:
            raise NotFoundError("Conversation not found")
        if actor_id is not None and actor_id not in doc.get("members", []):
            raise ForbiddenError("Not a member of this conversation")
        return doc

    def _authorize(self, doc: Dict[str, Any], actor_id: Optional[str], moderated: bool) -> None:
        if actor_id is None:
            return
        if actor_id not in doc.get("members", []):
            raise ForbiddenError("Not a member of this conversation")
        if not moderated:
            return
        if actor_id in doc.get("blocked", []):
            raise ForbiddenError("Blocked members cannot moderate this conversation")
        if doc.get("is_group") and actor_id not in doc.get("admins", []):
            raise ForbiddenError("Only conversation admins can do this")

    def _apply_patch(self, doc: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for key in ("title", "description", "image", "archived", "locked"):
            if key in patch and patch[key] is not None:
                fields[key] = patch[key]

        add = _unique(patch.get("add_members") or [])
        remove = set(patch.get("remove_members") or [])
        if add or remove:
            if not doc.get("is_group"):
                raise ValidationError("Direct conversation members cannot change")
            members = [m for m in _unique(doc["members"] + add) if m not in remove]
            if len(members) < 2:
                raise ValidationError("A group conversation needs at least two members")
            fields["members"] = members
            fields["admins"] = [a for a in doc.get("admins", []) if a in members]
            for m in add:
                if m not in doc["members"]:
                    fields[f"unread_counters.{m}"] = 0
        return fields

    async def update_conversation(
        self,
        conversation_id: str,
        patch: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        unknown = set(patch) - PATCHABLE
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        # membership and lock changes need an admin on group conversations
        moderated = bool(patch.get("add_members") or patch.get("remove_members")) or patch.get("locked") is not None

        for _ in range(CAS_ATTEMPTS):
            doc = await self.get_conversation(conversation_id)
            self._authorize(doc, actor_id, moderated)
            fields = self._apply_patch(doc, patch)
            if not fields:
                return doc
            try:
                applied = await self._conversation_repo.compare_and_set(doc["_id"], doc.get("version", 0), fields)
            except DuplicateKeyError:
                # unarchiving next to another active direct conversation
                existing = await self._conversation_repo.find_active_direct(doc["members"][0], doc["members"][1])
                raise ConflictError(
                    "Direct conversation already exists", existing_id=existing["_id"] if existing else None
                )
            if applied:
                logger.info(
                    "conversation updated",
                    extra={"conversation_id": doc["_id"], "fields": sorted(fields), "actor_id": actor_id},
                )
                return await self.get_conversation(conversation_id)
        raise ConflictError("Conversation is being modified concurrently, retry")

    async def block_member(self, conversation_id: str, member_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        doc = await self.get_conversation(conversation_id)
        self._authorize(doc, actor_id, moderated=True)
        if not await self._conversation_repo.add_blocked(conversation_id, member_id):
            raise NotFoundError("Conversation not found")
        logger.info("member blocked", extra={"conversation_id": conversation_id, "member_id": member_id, "actor_id": actor_id})
        return await self.get_conversation(conversation_id)

    async def unblock_member(self, conversation_id: str, member_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        doc = await self.get_conversation(conversation_id)
        self._authorize(doc, actor_id, moderated=True)
        if not await self._conversation_repo.remove_blocked(conversation_id, member_id):
            raise NotFoundError("Conversation not found")
        logger.info("member unblocked", extra={"conversation_id": conversation_id, "member_id": member_id, "actor_id": actor_id})
        return await self.get_conversation(conversation_id)

    @staticmethod
    def writable(doc: Dict[str, Any], actor_id: str) -> bool:
        return (
            not doc.get("locked", False)
            and actor_id in doc.get("members", [])
            and actor_id not in doc.get("blocked", [])
        )

    async def is_writable(self, conversation_id: str, actor_id: str) -> bool:
        # always the stored state, never a cached copy
        doc = await self.get_conversation(conversation_id)
        return self.writable(doc, actor_id)

    async def list_conversations(
        self,
        user_id: str,
        include_archived: bool = False,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        return await self._conversation_repo.list_for_user(user_id, include_archived=include_archived, limit=limit, cursor=cursor)

    async def next_message_stamp(self, conversation_id: str, sender_id: str) -> datetime:
        return await self._conversation_repo.next_message_stamp(conversation_id, sender_id)

    async def record_new_message(self, conversation_id: str, preview: str, receiver_id: str) -> None:
        await self._conversation_repo.update_on_new_message(conversation_id, preview, receiver_id)

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        await self._conversation_repo.reset_unread(conversation_id, user_id)
