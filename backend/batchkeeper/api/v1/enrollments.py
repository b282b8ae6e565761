"""Current user's batch entitlements: enroll / unenroll (both idempotent)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.api.deps import get_current_user
from batchkeeper.db.session import get_db
from batchkeeper.models.user import User
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.schemas.batch import EnrollBody
from batchkeeper.services.errors import BatchNotFound

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/me/batches", tags=["enrollments"])


@router.post(
    "",
    summary="Enroll in a batch",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Batch not found"}},
)
async def enroll(
    body: EnrollBody,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    store = CredentialStore(session)
    batch = await store.get_batch_by_external_id(body.batch_id)
    if batch is None:
        raise BatchNotFound(body.batch_id)
    added = await store.add_entitlement(user.id, batch.batch_id, body.name or batch.name)
    await session.commit()
    if added:
        logger.info("User %s enrolled in batch %s", user.id, batch.batch_id)
    return {"success": True, "batch_id": batch.batch_id, "added": added}


@router.delete(
    "/{batch_id}",
    summary="Unenroll from a batch",
    responses={401: {"description": "Not authenticated"}},
)
async def unenroll(
    batch_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict:
    removed = await CredentialStore(session).remove_entitlement(user.id, batch_id)
    await session.commit()
    return {"success": True, "batch_id": batch_id, "removed": bool(removed)}
