"""Admin: trigger a credential reconcile sweep and inspect recent runs. Guarded by the refresh key."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.api.deps import get_reconciler, require_refresh_key
from batchkeeper.db.session import get_db
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.schemas.batch import ReconcileRunOut
from batchkeeper.services.reconciler import BatchCredentialReconciler

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin/credentials",
    tags=["admin"],
    dependencies=[Depends(require_refresh_key)],
)


@router.api_route(
    "/refresh",
    methods=["GET", "POST"],
    summary="Run one credential refresh sweep",
    responses={401: {"description": "Invalid key"}, 503: {"description": "Refresh key not configured"}},
)
async def refresh_credentials(
    reconciler: Annotated[BatchCredentialReconciler, Depends(get_reconciler)],
) -> dict:
    """Runs to completion (or timeout) before answering; no per-credential report is returned."""
    summary = await reconciler.run(trigger="manual")
    logger.info("Manual reconcile run %s finished with status %s", summary.run_id, summary.status)
    return {"success": True, "message": "Token refresh cycle complete."}


@router.get(
    "/runs",
    response_model=list[ReconcileRunOut],
    summary="List recent reconcile runs",
    responses={401: {"description": "Invalid key"}, 503: {"description": "Refresh key not configured"}},
)
async def list_runs(
    session: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(default=20, ge=1, le=100),
) -> list[ReconcileRunOut]:
    runs = await CredentialStore(session).list_recent_runs(limit)
    return [ReconcileRunOut.model_validate(r) for r in runs]
