from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):

    recipients: List[str] = Field(min_length=1)
    title: str
    message: str
    type: str = "system"
    data: Optional[Dict[str, Any]] = None


class NotificationPublic(BaseModel):

    id: str
    title: str
    message: str
    time: datetime
    type: str
    source_user_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    is_read_by_requester: bool


class NotificationPage(BaseModel):

    items: List[NotificationPublic]
    next_cursor: Optional[str] = None


class UnreadCount(BaseModel):

    count: int
