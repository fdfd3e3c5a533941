from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, TypedDict


DeliveryState = Literal["sent", "received", "read"]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender: str
    receiver: str
    content: Optional[str]
    files: List[str]
    created_at: datetime
    # delivery states, only ever flipped to True: read => received => sent
    sent: bool
    received: bool
    read: bool
    received_at: Optional[datetime]
    read_at: Optional[datetime]
    # client ack
    client_message_id: Optional[str]


def delivery_transition(target: DeliveryState, now: datetime) -> Dict[str, Any]:
    """Return the ``$set`` document that moves a message forward to ``target``.

    Flags are only ever set to True and every higher state implies the lower
    ones, so applying any sequence of these updates keeps the lattice intact.
    """
    if target == "sent":
        return {"sent": True}
    if target == "received":
        return {"sent": True, "received": True, "received_at": now}
    if target == "read":
        return {"sent": True, "received": True, "read": True, "read_at": now}
    raise ValueError(f"unknown delivery state: {target}")
