from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):

    members: List[str]
    is_group: bool = False
    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = None


class ConversationPatch(BaseModel):
    """Partial update; unset fields are left alone."""

    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = None
    add_members: List[str] = Field(default_factory=list)
    remove_members: List[str] = Field(default_factory=list)
    archived: Optional[bool] = None
    locked: Optional[bool] = None


class ConversationPublic(BaseModel):

    id: str
    members: List[str]
    blocked: List[str] = Field(default_factory=list)
    admins: List[str] = Field(default_factory=list)
    is_group: bool
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    archived: bool = False
    locked: bool = False
    last_message_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    unread_counters: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "ConversationPublic":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k in cls.model_fields and k != "id"})
