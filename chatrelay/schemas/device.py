from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from chatrelay.models.device import PushPlatform


class DeviceRegister(BaseModel):

    platform: PushPlatform = "fcm"
    token: str = Field(min_length=1, max_length=4096)


class DevicePublic(BaseModel):

    platform: PushPlatform
    token: str
    registered_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
