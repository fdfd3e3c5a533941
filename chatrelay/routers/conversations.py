from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatrelay.schemas.conversation import ConversationCreate, ConversationPatch, ConversationPublic
from chatrelay.schemas.message import MessagePublic
from chatrelay.services.chat_service import ChatService
from chatrelay.services.conversation_service import ConversationService
from chatrelay.utils.dependencies import get_chat_service, get_conversation_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ConversationPublic)
async def create_conversation(body: ConversationCreate, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    members = list(body.members)
    if current_user["_id"] not in members:
        members.insert(0, current_user["_id"])
    doc = await service.create_conversation(
        members,
        is_group=body.is_group,
        title=body.title,
        description=body.description,
        image=body.image,
        created_by=current_user["_id"],
    )
    return ConversationPublic.from_document(doc)


@router.get("")
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, include_archived: bool = False, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    items, next_cursor = await service.list_conversations(current_user["_id"], include_archived=include_archived, limit=limit, cursor=cursor)
    return {"items": [ConversationPublic.from_document(it) for it in items], "next_cursor": next_cursor}


@router.get("/{conversation_id}", response_model=ConversationPublic)
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    doc = await service.get_conversation(conversation_id, actor_id=current_user["_id"])
    return ConversationPublic.from_document(doc)


@router.patch("/{conversation_id}", response_model=ConversationPublic)
async def update_conversation(conversation_id: str, body: ConversationPatch, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    patch = body.model_dump(exclude_unset=True)
    doc = await service.update_conversation(conversation_id, patch, actor_id=current_user["_id"])
    return ConversationPublic.from_document(doc)


@router.post("/{conversation_id}/blocked/{member_id}", response_model=ConversationPublic)
async def block_member(conversation_id: str, member_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    doc = await service.block_member(conversation_id, member_id, actor_id=current_user["_id"])
    return ConversationPublic.from_document(doc)


@router.delete("/{conversation_id}/blocked/{member_id}", response_model=ConversationPublic)
async def unblock_member(conversation_id: str, member_id: str, current_user: dict = Depends(get_current_user), service: ConversationService = Depends(get_conversation_service)):
    doc = await service.unblock_member(conversation_id, member_id, actor_id=current_user["_id"])
    return ConversationPublic.from_document(doc)


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages, next_cursor = await service.get_history(conversation_id, current_user["_id"], limit=limit, cursor=cursor)
    return {"items": [MessagePublic.from_document(m) for m in messages], "next_cursor": next_cursor}


@router.post("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    count = await service.mark_conversation_read(conversation_id, current_user["_id"])
    return {"updated": count}
