"""Batches: public listing, purchased-batch sync, protected video URL via credential fallback."""

import logging
import math
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.api.deps import get_current_user, get_fetcher, get_provider
from batchkeeper.db.session import get_db
from batchkeeper.models.user import User
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.schemas.batch import BatchOut, SyncResult
from batchkeeper.schemas.pagination import PAGE_SIZE, PaginatedResponse
from batchkeeper.services.content_fetch import ResourceFetcher
from batchkeeper.services.enrollment import sync_purchased_batches
from batchkeeper.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/batches", tags=["batches"])


@router.get(
    "",
    response_model=PaginatedResponse,
    summary="List batches",
    responses={401: {"description": "Not authenticated"}},
)
async def list_batches(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    page: int = Query(default=1, ge=1),
) -> PaginatedResponse:
    """Newest first, PAGE_SIZE per page."""
    rows, total = await CredentialStore(session).list_batches_page(page, PAGE_SIZE)
    return PaginatedResponse(
        items=[BatchOut.model_validate(b).model_dump(mode="json") for b in rows],
        total=total,
        page=page,
        total_pages=math.ceil(total / PAGE_SIZE),
        has_more=page * PAGE_SIZE < total,
    )


@router.post(
    "/sync",
    response_model=SyncResult,
    summary="Sync purchased batches from the provider",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Provider credential rejected; log in again"},
        502: {"description": "Provider unreachable"},
    },
)
async def sync_batches(
    session: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[ProviderClient, Depends(get_provider)],
    user: Annotated[User, Depends(get_current_user)],
) -> SyncResult:
    result = await sync_purchased_batches(session, provider, user)
    return SyncResult(batches_synced=result.batches_synced, tokens_updated=result.tokens_updated)


@router.get(
    "/{batch_id}/videos/{child_id}/url",
    summary="Resolve a protected video URL",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "No stored credential for the batch is accepted"},
        404: {"description": "Batch not found"},
    },
)
async def video_url(
    batch_id: str,
    child_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    fetcher: Annotated[ResourceFetcher, Depends(get_fetcher)],
    user: Annotated[User, Depends(get_current_user)],
) -> dict[str, Any]:
    return await fetcher.video_url(session, batch_id, child_id)
