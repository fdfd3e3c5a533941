import pytest


@pytest.mark.asyncio
async def test_create_and_fetch_direct_conversation(api_client, auth):
    response = await api_client.post("/conversations", json={"members": ["bob"]}, headers=auth("alice"))
    assert response.status_code == 201
    convo = response.json()
    assert convo["members"] == ["alice", "bob"]
    assert convo["is_group"] is False

    fetched = await api_client.get(f"/conversations/{convo['id']}", headers=auth("bob"))
    assert fetched.status_code == 200
    assert fetched.json()["id"] == convo["id"]

    outsider = await api_client.get(f"/conversations/{convo['id']}", headers=auth("mallory"))
    assert outsider.status_code == 403
    assert outsider.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_duplicate_direct_conversation_returns_existing_id(api_client, auth):
    first = await api_client.post("/conversations", json={"members": ["bob"]}, headers=auth("alice"))

    second = await api_client.post("/conversations", json={"members": ["alice"]}, headers=auth("bob"))

    assert second.status_code == 409
    body = second.json()
    assert body["code"] == "conflict"
    assert body["existing_id"] == first.json()["id"]


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(api_client):
    response = await api_client.get("/conversations")

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_bad_token_is_unauthorized(api_client):
    response = await api_client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_conversation_is_not_found(api_client, auth):
    response = await api_client.get("/conversations/not-an-id", headers=auth("alice"))

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_group_admin_flow(api_client, auth):
    created = await api_client.post(
        "/conversations",
        json={"members": ["bob", "carol"], "is_group": True, "title": "Trip"},
        headers=auth("alice"),
    )
    assert created.status_code == 201
    group = created.json()
    assert group["admins"] == ["alice"]

    denied = await api_client.patch(
        f"/conversations/{group['id']}", json={"add_members": ["dave"]}, headers=auth("bob")
    )
    assert denied.status_code == 403

    renamed = await api_client.patch(f"/conversations/{group['id']}", json={"title": "Trip 2"}, headers=auth("bob"))
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "Trip 2"

    grown = await api_client.patch(
        f"/conversations/{group['id']}", json={"add_members": ["dave"]}, headers=auth("alice")
    )
    assert grown.status_code == 200
    assert grown.json()["members"] == ["alice", "bob", "carol", "dave"]


@pytest.mark.asyncio
async def test_locked_conversation_rejects_messages(api_client, auth):
    created = await api_client.post("/conversations", json={"members": ["bob"]}, headers=auth("alice"))
    convo_id = created.json()["id"]

    locked = await api_client.patch(f"/conversations/{convo_id}", json={"locked": True}, headers=auth("bob"))
    assert locked.status_code == 200
    assert locked.json()["locked"] is True

    send = await api_client.post("/messages", json={"receiver": "bob", "content": "hi"}, headers=auth("alice"))
    assert send.status_code == 403

    unread = await api_client.get("/notifications/unread_count", headers=auth("bob"))
    assert unread.json() == {"count": 0}


@pytest.mark.asyncio
async def test_block_and_unblock_member(api_client, auth):
    created = await api_client.post("/conversations", json={"members": ["bob"]}, headers=auth("alice"))
    convo_id = created.json()["id"]

    blocked = await api_client.post(f"/conversations/{convo_id}/blocked/bob", headers=auth("alice"))
    assert blocked.status_code == 200
    assert blocked.json()["blocked"] == ["bob"]

    send = await api_client.post("/messages", json={"receiver": "alice", "content": "hey"}, headers=auth("bob"))
    assert send.status_code == 403

    unblocked = await api_client.delete(f"/conversations/{convo_id}/blocked/bob", headers=auth("alice"))
    assert unblocked.json()["blocked"] == []

    send = await api_client.post("/messages", json={"receiver": "alice", "content": "hey"}, headers=auth("bob"))
    assert send.status_code == 201


@pytest.mark.asyncio
async def test_list_conversations_paginates(api_client, auth):
    for other in ("bob", "carol", "dave"):
        await api_client.post("/conversations", json={"members": [other]}, headers=auth("alice"))

    first = await api_client.get("/conversations", params={"limit": 2}, headers=auth("alice"))
    body = first.json()
    assert len(body["items"]) == 2
    assert body["next_cursor"]

    second = await api_client.get(
        "/conversations", params={"limit": 2, "cursor": body["next_cursor"]}, headers=auth("alice")
    )
    rest = second.json()
    assert len(rest["items"]) == 1
    assert rest["next_cursor"] is None
    ids = {c["id"] for c in body["items"] + rest["items"]}
    assert len(ids) == 3


@pytest.mark.asyncio
async def test_history_and_mark_conversation_read(api_client, auth):
    for i in range(3):
        sent = await api_client.post("/messages", json={"receiver": "bob", "content": f"m{i}"}, headers=auth("alice"))
    convo_id = sent.json()["message"]["conversation_id"]

    history = await api_client.get(f"/conversations/{convo_id}/messages", headers=auth("bob"))
    assert [m["content"] for m in history.json()["items"]] == ["m0", "m1", "m2"]

    marked = await api_client.post(f"/conversations/{convo_id}/read", headers=auth("bob"))
    assert marked.json() == {"updated": 3}

    convo = await api_client.get(f"/conversations/{convo_id}", headers=auth("bob"))
    assert convo.json()["unread_counters"]["bob"] == 0

    forbidden = await api_client.get(f"/conversations/{convo_id}/messages", headers=auth("mallory"))
    assert forbidden.status_code == 403
