from datetime import datetime
from typing import Any, Dict, List, Optional, TypedDict


NEW_MESSAGE = "new-message"
SYSTEM = "system"


class NotificationDocument(TypedDict, total=False):
    _id: str
    title: str
    message: str
    type: str
    time: datetime
    source_user_id: Optional[str]
    # frozen at creation
    user_ids: List[str]
    # subset of user_ids, grows only
    read_by: List[str]
    data: Dict[str, Any]
    # recipients without a recorded successful push, shrinks only
    pending_dispatch: List[str]
    muted: bool
