"""Tests for batches endpoints: listing, video URL fallback over HTTP, enrollment."""

import pytest
from httpx import AsyncClient

from batchkeeper.repositories.credential_store import CredentialStore


@pytest.mark.asyncio
async def test_list_batches_paginates_newest_first_without_credentials(
    client: AsyncClient, create_user, create_batch, login_cookies
):
    user = await create_user()
    for i in range(12):
        await create_batch(f"b{i:02d}", [{"owner_id": user.id, "access_token": "secret-a", "refresh_token": "secret-r"}])

    first = await client.get("/api/v1/batches", headers=login_cookies(user))
    second = await client.get("/api/v1/batches", params={"page": 2}, headers=login_cookies(user))

    assert first.status_code == 200
    page1 = first.json()
    assert page1["total"] == 12
    assert page1["total_pages"] == 2
    assert page1["has_more"] is True
    assert len(page1["items"]) == 10
    assert page1["items"][0]["batch_id"] == "b11"
    assert "secret" not in first.text
    page2 = second.json()
    assert [b["batch_id"] for b in page2["items"]] == ["b01", "b00"]
    assert page2["has_more"] is False


@pytest.mark.asyncio
async def test_list_batches_requires_session(client: AsyncClient):
    resp = await client.get("/api/v1/batches")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_video_url_route_serves_and_falls_back(
    client: AsyncClient, fake_provider, create_user, create_batch, login_cookies
):
    viewer = await create_user(name="Viewer")
    owner = await create_user(name="Owner")
    await create_batch("b1", [{"owner_id": owner.id, "access_token": "good", "refresh_token": "r"}])

    resp = await client.get("/api/v1/batches/b1/videos/child-7/url", headers=login_cookies(viewer))

    assert resp.status_code == 200
    assert resp.json()["data"]["url"] == "https://cdn.test/child-7.mpd"


@pytest.mark.asyncio
async def test_video_url_route_unavailable_is_403(client: AsyncClient, fake_provider, create_user, create_batch, login_cookies):
    viewer = await create_user()
    owner = await create_user()
    await create_batch("b1", [{"owner_id": owner.id, "access_token": "dead", "refresh_token": "r"}])
    fake_provider.rejected_access_tokens.add("dead")

    resp = await client.get("/api/v1/batches/b1/videos/c/url", headers=login_cookies(viewer))

    assert resp.status_code == 403
    assert resp.json() == {
        "success": False,
        "message": "This batch is unavailable. Please contact admin to add this batch.",
    }


@pytest.mark.asyncio
async def test_video_url_route_unknown_batch_is_404(client: AsyncClient, create_user, login_cookies):
    viewer = await create_user()
    resp = await client.get("/api/v1/batches/nope/videos/c/url", headers=login_cookies(viewer))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_video_url_route_upstream_failure_keeps_status(
    client: AsyncClient, fake_provider, create_user, create_batch, login_cookies
):
    viewer = await create_user()
    owner = await create_user()
    await create_batch("b1", [{"owner_id": owner.id, "access_token": "flaky", "refresh_token": "r"}])
    fake_provider.failing_access_tokens.add("flaky")

    resp = await client.get("/api/v1/batches/b1/videos/c/url", headers=login_cookies(viewer))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Upstream exploded"


@pytest.mark.asyncio
async def test_enroll_and_unenroll_are_idempotent(client: AsyncClient, session_maker, create_user, create_batch, login_cookies):
    user = await create_user()
    await create_batch("b1", [], name="Physics")
    headers = login_cookies(user)

    first = await client.post("/api/v1/me/batches", json={"batch_id": "b1"}, headers=headers)
    again = await client.post("/api/v1/me/batches", json={"batch_id": "b1"}, headers=headers)
    assert first.json()["added"] is True
    assert again.json()["added"] is False
    async with session_maker() as session:
        entitlements = await CredentialStore(session).list_entitlements(user.id)
    assert [(e.batch_id, e.name) for e in entitlements] == [("b1", "Physics")]

    removed = await client.delete("/api/v1/me/batches/b1", headers=headers)
    removed_again = await client.delete("/api/v1/me/batches/b1", headers=headers)
    assert removed.json()["removed"] is True
    assert removed_again.json()["removed"] is False


@pytest.mark.asyncio
async def test_enroll_unknown_batch_is_404(client: AsyncClient, create_user, login_cookies):
    user = await create_user()
    resp = await client.post("/api/v1/me/batches", json={"batch_id": "ghost"}, headers=login_cookies(user))
    assert resp.status_code == 404
