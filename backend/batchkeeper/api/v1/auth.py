"""Auth: current session user, logout."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.api.deps import get_app_settings, get_current_user
from batchkeeper.config import Settings
from batchkeeper.core.cookies import clear_session_cookies
from batchkeeper.db.session import get_db
from batchkeeper.models.user import User
from batchkeeper.repositories.credential_store import CredentialStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class EntitlementOut(BaseModel):
    batch_id: str
    name: str


class UserOut(BaseModel):
    id: int
    name: str
    phone_number: str
    role: str
    enrolled_batches: list[EntitlementOut]


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated or session invalid"}},
)
async def me(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> UserOut:
    entitlements = await CredentialStore(session).list_entitlements(user.id)
    return UserOut(
        id=user.id,
        name=user.name,
        phone_number=user.phone_number,
        role=user.role,
        enrolled_batches=[EntitlementOut(batch_id=e.batch_id, name=e.name) for e in entitlements],
    )


@router.post(
    "/logout",
    summary="End the session and revoke its refresh token",
    responses={401: {"description": "Not authenticated"}},
)
async def logout(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    await CredentialStore(session).revoke_app_refresh_token(user.id)
    await session.commit()
    clear_session_cookies(response, settings)
    logger.info("User %s logged out", user.id)
    return {"message": "Logged out successfully"}
