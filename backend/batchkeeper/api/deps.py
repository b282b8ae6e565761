"""FastAPI dependencies: app-scoped components, current user from session cookies, refresh-trigger key."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.config import Settings
from batchkeeper.core.cookies import ACCESS_COOKIE, REFRESH_COOKIE, set_session_cookies
from batchkeeper.db.session import get_db
from batchkeeper.models.user import User
from batchkeeper.services.content_fetch import ResourceFetcher
from batchkeeper.services.provider_client import ProviderClient
from batchkeeper.services.reconciler import BatchCredentialReconciler
from batchkeeper.services.session_auth import SessionAuthenticator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_provider(request: Request) -> ProviderClient:
    return request.app.state.provider


def get_reconciler(request: Request) -> BatchCredentialReconciler:
    return request.app.state.reconciler


def get_fetcher(request: Request) -> ResourceFetcher:
    return request.app.state.fetcher


async def get_current_user(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Authenticate from cookies; on renewal the new cookies are set on the outgoing response.

    SessionError propagates to the handler in main, which answers 401 and clears cookies.
    """
    authenticator: SessionAuthenticator = request.app.state.authenticator
    result = await authenticator.authenticate(
        session,
        request.cookies.get(ACCESS_COOKIE),
        request.cookies.get(REFRESH_COOKIE),
    )
    if result.rotated is not None:
        set_session_cookies(
            response,
            get_app_settings(request),
            result.rotated.access_token,
            result.rotated.refresh_token,
        )
    return result.user


async def require_refresh_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    key: Annotated[str | None, Query()] = None,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Shared secret from ?key= or X-API-Key, compared in constant time."""
    expected = settings.refresh_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Refresh trigger not configured")
    for presented in (key, x_api_key):
        if presented and hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
            return
    raise HTTPException(status_code=401, detail="Unauthorized")
