from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):

    receiver: str = Field(min_length=1)
    content: Optional[str] = Field(default=None, max_length=5000)
    files: List[str] = Field(default_factory=list)
    client_message_id: Optional[str] = None


class MessagePublic(BaseModel):

    id: str
    conversation_id: str
    sender: str
    receiver: str
    content: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    created_at: datetime
    sent: bool
    received: bool
    read: bool
    received_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    client_message_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "MessagePublic":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k in cls.model_fields and k != "id"})


class MessageAck(BaseModel):

    message_id: str
    conversation_id: str
    client_message_id: Optional[str] = None


class SendResult(BaseModel):

    ack: MessageAck
    message: MessagePublic
