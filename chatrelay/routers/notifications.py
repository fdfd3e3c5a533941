from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatrelay.schemas.notification import NotificationCreate, NotificationPage, NotificationPublic, UnreadCount
from chatrelay.services.notification_service import NotificationService
from chatrelay.utils.dependencies import get_current_user, get_notification_service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=NotificationPublic)
async def create_notification(body: NotificationCreate, current_user: dict = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    doc = await service.notify(
        body.recipients,
        title=body.title,
        message=body.message,
        type=body.type,
        source_user_id=current_user["_id"],
        data=body.data,
    )
    return service.to_response(doc, current_user["_id"])


@router.get("", response_model=NotificationPage)
async def list_notifications(include_read: bool = True, limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    items, next_cursor = await service.page_for_user(current_user["_id"], include_read=include_read, limit=limit, cursor=cursor)
    return NotificationPage(items=items, next_cursor=next_cursor)


@router.get("/unread_count", response_model=UnreadCount)
async def unread_count(current_user: dict = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    return UnreadCount(count=await service.unread_count(current_user["_id"]))


@router.post("/read_all")
async def mark_all_read(current_user: dict = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    return {"updated": await service.mark_all_read(current_user["_id"])}


@router.post("/{notification_id}/read", response_model=NotificationPublic)
async def mark_read(notification_id: str, current_user: dict = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    doc = await service.mark_read(notification_id, current_user["_id"])
    return service.to_response(doc, current_user["_id"])
