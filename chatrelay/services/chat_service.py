import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from chatrelay.errors import ForbiddenError, NotFoundError, ValidationError
from chatrelay.models.message import DeliveryState
from chatrelay.models.notification import NEW_MESSAGE
from chatrelay.repositories.message_repository import MessageRepository
from chatrelay.services.conversation_service import ConversationService
from chatrelay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_service: ConversationService,
        notification_service: NotificationService,
    ) -> None:
        self._message_repo = message_repo
        self._conversations = conversation_service
        self._notifications = notification_service

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: Optional[str] = None,
        files: Optional[List[str]] = None,
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if content is not None and not isinstance(content, str):
            raise ValidationError("Message content must be text")
        if not isinstance(files or [], list) or not all(isinstance(f, str) for f in files or []):
            raise ValidationError("Message files must be a list of references")
        text = (content or "").strip() or None
        files = [f for f in (files or []) if f]
        if not text and not files:
            raise ValidationError("Message needs content or files")
        convo = await self._conversations.find_or_create_direct(sender_id, receiver_id)
        if not await self._conversations.is_writable(convo["_id"], sender_id):
            raise ForbiddenError("Conversation is locked or sender is blocked")

        created_at = await self._conversations.next_message_stamp(convo["_id"], sender_id)
        saved = await self._message_repo.save_message(
            conversation_id=convo["_id"],
            sender=sender_id,
            receiver=receiver_id,
            content=text,
            files=files,
            client_message_id=client_message_id,
            created_at=created_at,
        )
        preview = text[:PREVIEW_LENGTH] if text else f"[{len(files)} attachment(s)]"
        try:
            await self._conversations.record_new_message(convo["_id"], preview, receiver_id)
        except Exception:
            logger.exception("conversation summary update failed", extra={"message_id": saved["_id"]})
        logger.info(
            "message sent",
            extra={"message_id": saved["_id"], "conversation_id": convo["_id"], "sender_id": sender_id},
        )

        try:
            await self._notifications.notify(
                [receiver_id],
                title="New message",
                message=preview,
                type=NEW_MESSAGE,
                source_user_id=sender_id,
                data={"conversation_id": convo["_id"], "message_id": saved["_id"], "sender": sender_id},
            )
        except Exception:
            # the message is committed; a lost alert must not undo it
            logger.exception("new-message notification failed", extra={"message_id": saved["_id"]})

        ack = {"message_id": saved["_id"], "conversation_id": convo["_id"], "client_message_id": client_message_id}
        return {"ack": ack, "message": saved}

    async def _transition(self, message_id: str, actor_id: str, target: DeliveryState) -> Dict[str, Any]:
        msg = await self._message_repo.get(message_id)
        if not msg:
            raise NotFoundError("Message not found")
        if msg["receiver"] != actor_id:
            raise ForbiddenError("Only the receiver can acknowledge this message")
        # no-op when already there; either way report the committed state
        await self._message_repo.advance(message_id, actor_id, target)
        return await self._message_repo.get(message_id)

    async def mark_received(self, message_id: str, actor_id: str) -> Dict[str, Any]:
        return await self._transition(message_id, actor_id, "received")

    async def mark_read(self, message_id: str, actor_id: str) -> Dict[str, Any]:
        return await self._transition(message_id, actor_id, "read")

    def list_sent_by_user(self, user_id: str, cursor: Optional[str] = None, batch_size: int = 100) -> AsyncIterator[Dict[str, Any]]:
        return self._message_repo.iter_by_party("sender", user_id, batch_size=batch_size, cursor=cursor)

    def list_received_by_user(self, user_id: str, cursor: Optional[str] = None, batch_size: int = 100) -> AsyncIterator[Dict[str, Any]]:
        return self._message_repo.iter_by_party("receiver", user_id, batch_size=batch_size, cursor=cursor)

    async def page_sent(self, user_id: str, limit: int = 50, cursor: str | None = None):
        return await self._message_repo.page_by_party("sender", user_id, limit=limit, cursor=cursor)

    async def page_received(self, user_id: str, limit: int = 50, cursor: str | None = None):
        return await self._message_repo.page_by_party("receiver", user_id, limit=limit, cursor=cursor)

    async def get_history(
        self, conversation_id: str, actor_id: str, limit: int = 50, cursor: str | None = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        await self._conversations.get_conversation(conversation_id, actor_id=actor_id)
        return await self._message_repo.get_messages_by_conversation(conversation_id, limit=limit, cursor=cursor)

    async def search_messages(
        self, actor_id: str, query: str, conversation_id: Optional[str] = None, limit: int = 20
    ) -> List[Dict[str, Any]]:
        text = (query or "").strip()
        if not text:
            raise ValidationError("Search query must not be empty")
        if conversation_id is not None:
            await self._conversations.get_conversation(conversation_id, actor_id=actor_id)
        return await self._message_repo.search(actor_id, text, conversation_id=conversation_id, limit=limit)

    async def get_unread(self, user_id: str, from_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._message_repo.get_unread(user_id, from_user_id)

    async def mark_conversation_read(self, conversation_id: str, actor_id: str) -> int:
        await self._conversations.get_conversation(conversation_id, actor_id=actor_id)
        modified = await self._message_repo.mark_conversation_read(conversation_id, actor_id)
        await self._conversations.reset_unread(conversation_id, actor_id)
        return modified
