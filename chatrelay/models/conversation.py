from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    members: List[str]
    blocked: List[str]
    admins: List[str]
    is_group: bool
    # sorted "a:b" member pair, direct conversations only
    direct_key: Optional[str]
    title: Optional[str]
    description: Optional[str]
    image: Optional[str]
    archived: bool
    locked: bool
    last_message_at: datetime
    last_message_preview: Optional[str]
    # per-user unread counters (user_id -> count)
    unread_counters: dict[str, int]
    # last message stamp handed to each sender (user_id -> created_at)
    sender_clock: dict[str, datetime]
    version: int
    created_at: datetime


def direct_key_for(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))
