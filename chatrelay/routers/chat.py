import asyncio
import json
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from chatrelay.errors import ChatRelayError
from chatrelay.schemas.message import MessageCreate, MessagePublic, SendResult
from chatrelay.services.chat_service import ChatService
from chatrelay.utils.dependencies import get_bus, get_chat_service, get_connection_manager, get_current_user
from chatrelay.utils.realtime_bus import publish_event, user_channel
from chatrelay.utils.security import decode_access_token
from chatrelay.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


def _message_event(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "message",
        "message": MessagePublic.from_document(result["message"]).model_dump(mode="json"),
        "ack": result["ack"],
    }


def _state_event(kind: str, message: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": kind, "message_id": message["_id"], "conversation_id": message["conversation_id"], "from": message["receiver"]}


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SendResult)
async def send_message(body: MessageCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), bus=Depends(get_bus)):
    result = await service.send_message(current_user["_id"], body.receiver, body.content, body.files, body.client_message_id)
    await publish_event(bus, body.receiver, _message_event(result))
    return SendResult(ack=result["ack"], message=MessagePublic.from_document(result["message"]))


@router.post("/{message_id}/received", response_model=MessagePublic)
async def mark_received(message_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), bus=Depends(get_bus)):
    msg = await service.mark_received(message_id, current_user["_id"])
    await publish_event(bus, msg["sender"], _state_event("delivered", msg))
    return MessagePublic.from_document(msg)


@router.post("/{message_id}/read", response_model=MessagePublic)
async def mark_read(message_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service), bus=Depends(get_bus)):
    msg = await service.mark_read(message_id, current_user["_id"])
    await publish_event(bus, msg["sender"], _state_event("seen", msg))
    return MessagePublic.from_document(msg)


@router.get("/sent")
async def list_sent(limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items, next_cursor = await service.page_sent(current_user["_id"], limit=limit, cursor=cursor)
    return {"items": [MessagePublic.from_document(m) for m in items], "next_cursor": next_cursor}


@router.get("/received")
async def list_received(limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items, next_cursor = await service.page_received(current_user["_id"], limit=limit, cursor=cursor)
    return {"items": [MessagePublic.from_document(m) for m in items], "next_cursor": next_cursor}


@router.get("/search")
async def search_messages(q: str = Query(..., min_length=1, max_length=200), conversation_id: Optional[str] = None, limit: int = Query(20, ge=1, le=100), current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages = await service.search_messages(current_user["_id"], q, conversation_id=conversation_id, limit=limit)
    return {"messages": [MessagePublic.from_document(m) for m in messages]}


@router.get("/unread")
async def get_unread(from_user_id: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages = await service.get_unread(current_user["_id"], from_user_id)
    return {"messages": [MessagePublic.from_document(m) for m in messages]}


async def _handle_frame(websocket: WebSocket, user_id: str, msg: Dict[str, Any], service: ChatService, bus) -> None:
    kind = msg.get("type", "message")
    if kind == "delivered":
        updated = await service.mark_received(str(msg.get("message_id", "")), user_id)
        await publish_event(bus, updated["sender"], _state_event("delivered", updated))
        return
    if kind == "seen":
        updated = await service.mark_read(str(msg.get("message_id", "")), user_id)
        await publish_event(bus, updated["sender"], _state_event("seen", updated))
        return
    if kind == "message":
        try:
            body = MessageCreate(
                receiver=msg.get("to"),
                content=msg.get("content"),
                files=msg.get("files") or [],
                client_message_id=msg.get("client_message_id"),
            )
        except PydanticValidationError:
            await websocket.send_text(json.dumps({"type": "error", "code": "validation_error", "detail": "Invalid message payload"}))
            return
        result = await service.send_message(user_id, body.receiver, body.content, body.files, body.client_message_id)
        # ack back to the sender
        await websocket.send_text(json.dumps({"type": "ack", "ack": result["ack"]}))
        await publish_event(bus, body.receiver, _message_event(result))
        return
    await websocket.send_text(json.dumps({"type": "error", "code": "validation_error", "detail": f"Unknown frame type: {kind}"}))


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, service: ChatService = Depends(get_chat_service), bus=Depends(get_bus), manager: ConnectionManager = Depends(get_connection_manager)):
    # JWT protects the socket: token comes in as ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        await websocket.close(code=4401)
        return
    if payload.get("sub") != user_id:
        await websocket.close(code=4403)
        return

    await manager.connect(user_id, websocket)
    subscriber = None
    sub_task = None
    if bus.enabled:
        # other workers publish to this user's channel
        subscriber = await bus.subscribe(user_channel(user_id), websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
                if not isinstance(msg, dict):
                    raise ValueError("frame is not an object")
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "code": "validation_error", "detail": "Frames must be JSON"}))
                continue
            try:
                await _handle_frame(websocket, user_id, msg, service, bus)
            except ChatRelayError as exc:
                await websocket.send_text(json.dumps({"type": "error", "code": exc.code, "detail": exc.message}))
    except WebSocketDisconnect:
        logger.debug("socket closed", extra={"user_id": user_id})
    finally:
        manager.disconnect(user_id, websocket)
        if sub_task is not None:
            sub_task.cancel()
        if subscriber is not None:
            await subscriber.cancel()
