"""JWT creation/verification and application refresh tokens."""

import secrets
from datetime import datetime, timezone, timedelta
from typing import Any

from jose import jwt

from batchkeeper.config import Settings


def create_access_token(
    settings: Settings,
    user_id: int,
    name: str,
    expires_in: int | None = None,
) -> str:
    """HS256 access token with sub=user_id; expires_in defaults to ACCESS_TOKEN_EXPIRE_SECONDS."""
    now = datetime.now(timezone.utc)
    ttl = settings.access_token_expire_seconds if expires_in is None else expires_in
    payload = {
        "sub": str(user_id),
        "name": name,
        "iat": int(now.timestamp()),
        "exp": now + timedelta(seconds=ttl),
    }
    result = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def create_refresh_token() -> str:
    """New application refresh token: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def decode_token(settings: Settings, token: str, verify_exp: bool = True) -> dict[str, Any]:
    """Verify signature (and expiry unless verify_exp=False). Raises jose JWTError / ExpiredSignatureError."""
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"verify_exp": verify_exp},
    )
