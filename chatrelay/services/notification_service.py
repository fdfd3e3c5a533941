"""Notification fan-out: one record per event, per-recipient read state, detached push."""

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from chatrelay.errors import ForbiddenError, NotFoundError, ValidationError
from chatrelay.repositories.device_repository import DeviceRepository
from chatrelay.repositories.notification_repository import NotificationRepository
from chatrelay.repositories.pagination import utc_now
from chatrelay.schemas.notification import NotificationPublic
from chatrelay.utils.notifications import PushDispatcher, PushPayload, build_payload

logger = logging.getLogger(__name__)


def _dedupe(recipients: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for r in recipients:
        if r and r not in seen:
            seen.add(r)
            out.append(r)
    return out


class NotificationService:
    """Long-lived: owns the dispatch semaphore and the in-flight dispatch tasks."""

    def __init__(
        self,
        notification_repo: NotificationRepository,
        device_repo: DeviceRepository,
        push: PushDispatcher,
        max_concurrency: int = 8,
    ) -> None:
        self._repo = notification_repo
        self._device_repo = device_repo
        self._push = push
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def to_response(doc: Dict[str, Any], requester_id: str) -> NotificationPublic:
        return NotificationPublic(
            id=str(doc["_id"]),
            title=doc["title"],
            message=doc["message"],
            time=doc["time"],
            type=doc["type"],
            source_user_id=doc.get("source_user_id"),
            data=doc.get("data") or None,
            is_read_by_requester=requester_id in (doc.get("read_by") or []),
        )

    async def notify(
        self,
        recipients: Iterable[str],
        title: str,
        message: str,
        type: str,
        source_user_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        user_ids = _dedupe(recipients)
        if not user_ids:
            raise ValidationError("Notification needs at least one recipient")
        doc: Dict[str, Any] = {
            "title": title,
            "message": message,
            "type": type,
            "time": utc_now(),
            "source_user_id": source_user_id,
            "user_ids": user_ids,
            "read_by": [],
            "data": dict(data or {}),
            "pending_dispatch": list(user_ids),
            "muted": False,
        }
        saved = await self._repo.insert(doc)
        logger.info(
            "notification created",
            extra={"notification_id": saved["_id"], "type": type, "recipient_count": len(user_ids)},
        )
        self._schedule_dispatch(saved, user_ids)
        return saved

    def _schedule_dispatch(self, notification: Dict[str, Any], recipients: List[str]) -> None:
        task = asyncio.create_task(self._dispatch_all(notification, recipients))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch_all(self, notification: Dict[str, Any], recipients: List[str]) -> None:
        payload = build_payload(notification)
        await asyncio.gather(*(self._dispatch_one(notification["_id"], r, payload) for r in recipients))

    async def _dispatch_one(self, notification_id: str, recipient_id: str, payload: PushPayload) -> None:
        async with self._semaphore:
            try:
                tokens = await self._device_repo.tokens_for(recipient_id, platform="fcm")
                if not tokens:
                    # nothing to deliver to; not a failure worth re-sweeping
                    await self._repo.mark_dispatched(notification_id, recipient_id)
                    logger.debug("no push targets", extra={"notification_id": notification_id, "recipient_id": recipient_id})
                    return
                outcome = await self._push.dispatch(recipient_id, tokens, payload)
                if outcome.delivered:
                    await self._repo.mark_dispatched(notification_id, recipient_id)
                    return
                logger.warning(
                    "push dispatch failed",
                    extra={"notification_id": notification_id, "recipient_id": recipient_id, "reason": outcome.reason},
                )
            except Exception:
                logger.exception(
                    "push dispatch errored",
                    extra={"notification_id": notification_id, "recipient_id": recipient_id},
                )

    async def drain(self) -> None:
        """Wait for in-flight dispatch tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _get(self, notification_id: str) -> Dict[str, Any]:
        doc = await self._repo.get(notification_id)
        if not doc:
            raise NotFoundError("Notification not found")
        return doc

    async def mark_read(self, notification_id: str, actor_id: str) -> Dict[str, Any]:
        doc = await self._get(notification_id)
        if actor_id not in doc.get("user_ids", []):
            raise ForbiddenError("Not a recipient of this notification")
        await self._repo.add_reader(notification_id, actor_id)
        return await self._get(notification_id)

    async def mark_all_read(self, actor_id: str) -> int:
        return await self._repo.mark_all_read(actor_id)

    def list_for_user(
        self,
        actor_id: str,
        include_read: bool = True,
        cursor: Optional[str] = None,
        batch_size: int = 100,
    ) -> AsyncIterator[Dict[str, Any]]:
        return self._repo.iter_for_user(actor_id, include_read=include_read, batch_size=batch_size, cursor=cursor)

    async def page_for_user(
        self,
        actor_id: str,
        include_read: bool = True,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[NotificationPublic], Optional[str]]:
        items, next_cursor = await self._repo.page_for_user(actor_id, include_read=include_read, limit=limit, cursor=cursor)
        return [self.to_response(it, actor_id) for it in items], next_cursor

    async def unread_count(self, actor_id: str) -> int:
        return await self._repo.unread_count(actor_id)

    async def set_muted(self, notification_id: str, muted: bool) -> None:
        if not await self._repo.set_muted(notification_id, muted):
            raise NotFoundError("Notification not found")

    async def list_undispatched(self, older_than: Optional[datetime] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._repo.list_undispatched(older_than=older_than, limit=limit)

    async def redispatch(self, notification_id: str) -> int:
        """Schedule one more attempt for recipients still pending; returns how many."""
        doc = await self._get(notification_id)
        if doc.get("muted"):
            return 0
        pending = list(doc.get("pending_dispatch") or [])
        if pending:
            self._schedule_dispatch(doc, pending)
        return len(pending)
