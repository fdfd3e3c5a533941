import pytest

from chatrelay.jobs.redispatch import run_once
from chatrelay.models.notification import SYSTEM


@pytest.mark.asyncio
async def test_sweep_retries_stuck_recipients(notification_service, devices, push):
    await devices.register("x", "fcm", "token-x")
    await devices.register("y", "fcm", "token-y")
    push.fail_for.update({"x", "y"})
    await notification_service.notify(["x", "y"], "Hello", "world", SYSTEM)
    await notification_service.drain()
    push.calls.clear()
    push.fail_for.discard("x")

    retried = await run_once(notification_service, min_age_seconds=0)

    assert retried == 2
    assert push.recipients == ["x", "y"]
    pending = await notification_service.list_undispatched()
    assert [d["pending_dispatch"] for d in pending] == [["y"]]


@pytest.mark.asyncio
async def test_sweep_skips_fresh_notifications(notification_service, devices, push):
    await devices.register("x", "fcm", "token-x")
    push.fail_for.add("x")
    await notification_service.notify(["x"], "Hello", "world", SYSTEM)
    await notification_service.drain()
    push.calls.clear()

    assert await run_once(notification_service, min_age_seconds=3600) == 0
    assert push.calls == []
