import pytest

from chatrelay.repositories import device_repository


@pytest.mark.asyncio
async def test_register_is_an_upsert(devices):
    first = await devices.register("bob", "fcm", "t1")
    again = await devices.register("bob", "fcm", "t1")

    assert first["_id"] == again["_id"]
    assert again["registered_at"] == first["registered_at"]
    assert await devices.tokens_for("bob") == ["t1"]


@pytest.mark.asyncio
async def test_tokens_are_filtered_by_platform(devices):
    await devices.register("bob", "fcm", "phone")
    await devices.register("bob", "webpush", "browser")
    await devices.register("carol", "fcm", "other")

    assert await devices.tokens_for("bob", platform="fcm") == ["phone"]
    assert sorted(await devices.tokens_for("bob")) == ["browser", "phone"]


@pytest.mark.asyncio
async def test_tokens_are_capped_newest_first(devices, monkeypatch):
    monkeypatch.setattr(device_repository, "MAX_TOKENS_PER_USER", 2)
    for token in ("old", "mid", "new"):
        await devices.register("bob", "fcm", token)

    assert await devices.tokens_for("bob") == ["new", "mid"]


@pytest.mark.asyncio
async def test_unregister_reports_missing_token(devices):
    await devices.register("bob", "fcm", "t1")

    assert await devices.unregister("bob", "t1") is True
    assert await devices.unregister("bob", "t1") is False
    assert await devices.tokens_for("bob") == []
