"""One sweep over notifications whose push never went through.

The scheduler that calls ``run_once`` owns cadence and attempt limits.
"""

import logging
from datetime import timedelta

from chatrelay.repositories.pagination import utc_now
from chatrelay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def run_once(service: NotificationService, min_age_seconds: int = 300, limit: int = 100) -> int:
    # skip fresh notifications whose first dispatch may still be in flight
    cutoff = utc_now() - timedelta(seconds=min_age_seconds)
    scheduled = 0
    for doc in await service.list_undispatched(older_than=cutoff, limit=limit):
        scheduled += await service.redispatch(doc["_id"])
    await service.drain()
    logger.info("redispatch sweep finished", extra={"recipients_retried": scheduled})
    return scheduled
