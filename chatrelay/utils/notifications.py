"""Push dispatch adapters.

One adapter instance is built at startup (``build_push``) and handed to the
notification service. ``dispatch`` never raises: every failure comes back as a
``DispatchOutcome`` with a reason.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from chatrelay.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushPayload:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchOutcome:
    delivered: bool
    reason: Optional[str] = None


def build_payload(notification: Dict[str, Any]) -> PushPayload:
    data = {k: str(v) for k, v in (notification.get("data") or {}).items() if v is not None}
    data["notification_id"] = str(notification["_id"])
    data["type"] = str(notification.get("type", ""))
    return PushPayload(title=notification.get("title", ""), body=notification.get("message", ""), data=data)


class PushDispatcher(Protocol):

    enabled: bool

    async def dispatch(self, recipient_id: str, tokens: List[str], payload: PushPayload) -> DispatchOutcome:
        ...


class NoopPush:

    enabled = False

    async def dispatch(self, recipient_id: str, tokens: List[str], payload: PushPayload) -> DispatchOutcome:
        return DispatchOutcome(delivered=False, reason="push disabled")


class FcmPush:

    enabled = True

    def __init__(self, client, timeout_seconds: float = 10.0) -> None:
        self._client = client
        self._timeout = timeout_seconds

    def _send_one(self, token: str, payload: PushPayload) -> None:
        self._client.notify(
            fcm_token=token,
            notification_title=payload.title,
            notification_body=payload.body,
            data_payload=payload.data,
        )

    async def dispatch(self, recipient_id: str, tokens: List[str], payload: PushPayload) -> DispatchOutcome:
        if not tokens:
            return DispatchOutcome(delivered=False, reason="no push targets")
        delivered = 0
        last_error = None
        for token in tokens:
            try:
                # pyfcm is sync; keep it off the event loop
                await asyncio.wait_for(asyncio.to_thread(self._send_one, token, payload), timeout=self._timeout)
                delivered += 1
            except asyncio.TimeoutError:
                last_error = "timeout"
            except Exception as exc:  # gateway errors become outcomes, never raise
                last_error = f"{type(exc).__name__}: {exc}"
        if delivered:
            return DispatchOutcome(delivered=True)
        return DispatchOutcome(delivered=False, reason=last_error)


def build_push(settings: Settings) -> PushDispatcher:
    if not settings.fcm_service_account_file:
        logger.info("push disabled: no FCM credentials configured")
        return NoopPush()
    from pyfcm import FCMNotification

    client = FCMNotification(
        service_account_file=settings.fcm_service_account_file,
        project_id=settings.fcm_project_id,
    )
    return FcmPush(client, timeout_seconds=settings.push_timeout_seconds)
