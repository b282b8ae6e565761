"""Pytest configuration and shared fixtures: per-test SQLite app, simulated provider, factories."""

import asyncio
import itertools
import json
import os
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Module-level app in batchkeeper.main is built at import; keep it off PostgreSQL.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./batchkeeper-import.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from batchkeeper.config import Settings
from batchkeeper.core.auth import create_access_token
from batchkeeper.db.session import init_db
from batchkeeper.main import create_app
from batchkeeper.models.batch import Batch, EnrolledToken
from batchkeeper.models.user import User, UserBatchEntitlement

pytest_plugins = ["pytest_asyncio"]

PROVIDER_BASE = "https://provider.test"


class FakeProvider:
    """Simulated upstream: single-use refresh tokens, per-token video responses, Telegram sink."""

    def __init__(self):
        self._seq = itertools.count(1)
        self.refresh_calls: list[str] = []
        self.refresh_headers: list[httpx.Headers] = []
        self.spent_refresh_tokens: set[str] = set()
        self.rejected_refresh_tokens: set[str] = set()
        self.refresh_delay = 0.0
        self.video_calls: list[str] = []
        self.rejected_access_tokens: set[str] = set()
        self.failing_access_tokens: set[str] = set()
        self.purchased: list[dict] = []
        self.details: dict[str, dict] = {}
        self.telegram_messages: list[dict] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.telegram.org":
            self.telegram_messages.append(_json(request))
            return httpx.Response(200, json={"ok": True})
        path = request.url.path
        if path == "/v3/oauth/refresh-token":
            return await self._refresh(request)
        if path == "/v1/videos/video-url-details":
            return self._video(request)
        if path == "/batch-service/v1/batches/purchased-batches":
            if _bearer(request) in self.rejected_access_tokens:
                return httpx.Response(401, json={"message": "Unauthorized"})
            return httpx.Response(200, json={"success": True, "data": self.purchased})
        if path.startswith("/v3/batches/") and path.endswith("/details"):
            batch_id = path.split("/")[3]
            if batch_id not in self.details:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json={"success": True, "data": self.details[batch_id]})
        return httpx.Response(404, json={"message": "Unknown route"})

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        token = _json(request).get("refresh_token")
        self.refresh_calls.append(token)
        self.refresh_headers.append(request.headers)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if token in self.rejected_refresh_tokens or token in self.spent_refresh_tokens:
            return httpx.Response(401, json={"message": "Invalid refresh token"})
        self.spent_refresh_tokens.add(token)
        n = next(self._seq)
        return httpx.Response(
            200,
            json={"success": True, "data": {"access_token": f"new-access-{n}", "refresh_token": f"new-refresh-{n}"}},
        )

    def _video(self, request: httpx.Request) -> httpx.Response:
        token = _bearer(request)
        self.video_calls.append(token)
        if token in self.rejected_access_tokens:
            return httpx.Response(401, json={"message": "Token expired"})
        if token in self.failing_access_tokens:
            return httpx.Response(500, json={"message": "Upstream exploded"})
        child_id = request.url.params.get("childId")
        return httpx.Response(
            200,
            json={"success": True, "data": {"url": f"https://cdn.test/{child_id}.mpd", "served_by": token}},
        )


def _json(request: httpx.Request) -> dict:
    return json.loads(request.content or b"{}")


def _bearer(request: httpx.Request) -> str:
    return request.headers.get("authorization", "").removeprefix("Bearer ").strip()


def cookie_header(access_token: str, refresh_token: str) -> dict:
    """Explicit Cookie header; takes precedence over the client's cookie jar."""
    return {"Cookie": f"accessToken={access_token}; refreshToken={refresh_token}"}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        app_env="development",
        secret_key="test-secret-key",
        provider_base_url=PROVIDER_BASE,
        refresh_api_key="test-refresh-key",
        reconcile_concurrency=3,
        reconcile_timeout_seconds=30,
        invalid_token_retention_days=7,
        telegram_bot_token="bot-token",
        telegram_chat_id="1001",
        cors_origins="http://localhost:3000",
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def http_client(fake_provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def app(settings, http_client):
    """App per test with tables created; lifespan (scheduler) is not run."""
    application = create_app(settings, http_client)
    await init_db(application.state.engine)
    yield application
    await application.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_maker(app):
    return app.state.session_maker


@pytest.fixture
def create_user(session_maker):
    """Factory: create a committed user and return it. Each user gets a distinct app refresh token."""
    phones = itertools.count(9000000001)

    async def _create(
        name: str = "Test User",
        refresh_token: str | None = None,
        provider_access_token: str | None = "prov-access",
        provider_refresh_token: str | None = "prov-refresh",
        provider_correlation_id: str | None = "corr-user",
    ) -> User:
        phone = str(next(phones))
        async with session_maker() as session:
            user = User(
                name=name,
                phone_number=phone,
                refresh_token=refresh_token or f"app-refresh-{phone}",
                provider_access_token=provider_access_token,
                provider_refresh_token=provider_refresh_token,
                provider_correlation_id=provider_correlation_id,
                has_logged_in=True,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _create


@pytest.fixture
def create_batch(session_maker):
    """Factory: create a committed batch with enrolled tokens.

    tokens: list of dicts with owner_id, access_token, refresh_token and optional
    is_valid, correlation_id, updated_at.
    """
    async def _create(batch_id: str, tokens: list[dict] | None = None, is_active: bool = True, **fields) -> Batch:
        async with session_maker() as session:
            batch = Batch(batch_id=batch_id, name=fields.pop("name", f"Batch {batch_id}"), is_active=is_active, **fields)
            session.add(batch)
            await session.flush()
            for t in tokens or []:
                session.add(
                    EnrolledToken(
                        batch_pk=batch.id,
                        owner_id=t["owner_id"],
                        access_token=t.get("access_token", ""),
                        refresh_token=t.get("refresh_token", ""),
                        is_valid=t.get("is_valid", True),
                        correlation_id=t.get("correlation_id", "corr"),
                        updated_at=t.get("updated_at", datetime.now(timezone.utc)),
                    )
                )
            await session.commit()
            await session.refresh(batch)
            return batch

    return _create


@pytest.fixture
def grant(session_maker):
    """Factory: give a user an entitlement to a batch."""
    async def _grant(user_id: int, batch_id: str, name: str = "Granted") -> None:
        async with session_maker() as session:
            session.add(UserBatchEntitlement(user_id=user_id, batch_id=batch_id, name=name))
            await session.commit()

    return _grant


@pytest.fixture
def login_cookies(settings):
    """Cookie header for a valid (non-expired) session of the given user."""
    def _cookies(user: User) -> dict:
        return cookie_header(create_access_token(settings, user.id, user.name), user.refresh_token or "")

    return _cookies
