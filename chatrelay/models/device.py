from datetime import datetime
from typing import Literal, TypedDict


# only fcm tokens are dispatched today; webpush rows are stored for later
PushPlatform = Literal["fcm", "webpush"]


class DeviceDocument(TypedDict, total=False):
    _id: str
    user_id: str
    platform: PushPlatform
    token: str
    registered_at: datetime
    last_seen_at: datetime
