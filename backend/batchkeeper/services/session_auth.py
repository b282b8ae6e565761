"""
Request-time authentication of the application's own session cookies.

A valid access token resolves straight to its user. An expired (but correctly
signed) access token is renewed when the presented refresh token matches the
one stored on the user; the refresh token is single-use and the swap is a
conditional update, so of two racing renewals only one wins.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from jose import ExpiredSignatureError, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.config import Settings
from batchkeeper.core.auth import create_access_token, create_refresh_token, decode_token
from batchkeeper.models.user import User
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.services.errors import SessionInvalid, SessionMissing

logger = logging.getLogger(__name__)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str


@dataclass
class SessionResult:
    user: User
    rotated: SessionTokens | None = None


def _user_id_from_payload(payload: dict) -> int:
    sub = payload.get("sub")
    if not sub:
        raise SessionInvalid("Unauthorized: Invalid access token")
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise SessionInvalid("Unauthorized: Invalid access token")


class SessionAuthenticator:
    def __init__(self, settings: Settings):
        self._settings = settings

    def issue_tokens(self, user: User) -> SessionTokens:
        return SessionTokens(
            access_token=create_access_token(self._settings, user.id, user.name),
            refresh_token=create_refresh_token(),
        )

    async def authenticate(
        self,
        session: AsyncSession,
        access_token: str | None,
        refresh_token: str | None,
    ) -> SessionResult:
        if not access_token or not refresh_token:
            raise SessionMissing()
        try:
            payload = decode_token(self._settings, access_token)
        except ExpiredSignatureError:
            return await self._rotate(session, access_token, refresh_token)
        except JWTError:
            raise SessionInvalid("Unauthorized: Invalid access token")
        user = await CredentialStore(session).get_user(_user_id_from_payload(payload))
        if user is None:
            raise SessionInvalid("Unauthorized: User not found")
        return SessionResult(user=user)

    async def _rotate(self, session: AsyncSession, access_token: str, refresh_token: str) -> SessionResult:
        try:
            payload = decode_token(self._settings, access_token, verify_exp=False)
        except JWTError:
            raise SessionInvalid("Unauthorized: Invalid access token")
        store = CredentialStore(session)
        user = await store.get_user(_user_id_from_payload(payload))
        if user is None:
            raise SessionInvalid("Unauthorized: User not found")
        if not user.refresh_token or not hmac.compare_digest(
            user.refresh_token.encode("utf-8"), refresh_token.encode("utf-8")
        ):
            logger.warning("Refresh token mismatch for user_id=%s; possible token reuse", user.id)
            raise SessionInvalid("Unauthorized: Refresh token mismatch")

        tokens = self.issue_tokens(user)
        if not await store.rotate_app_refresh_token(user.id, refresh_token, tokens.refresh_token):
            logger.warning("Refresh token for user_id=%s was rotated concurrently", user.id)
            raise SessionInvalid("Unauthorized: Refresh token already used")
        await session.commit()
        logger.debug("Rotated session for user_id=%s", user.id)
        return SessionResult(user=user, rotated=tokens)
