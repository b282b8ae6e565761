"""
Serve protected batch content by trying each usable credential of the batch in turn.

A credential the provider rejects (401/403) is removed from the batch, along with
its owner's entitlement, and the next one is tried. Any other provider failure is
not the credential's fault and is raised to the caller unchanged.
"""
from __future__ import annotations

import logging
from typing import Any

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.services.errors import BatchNotFound, BatchUnavailable, ProviderAuthError
from batchkeeper.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)

FALLBACK_PRUNED_TOTAL = Counter(
    "batchkeeper_fallback_pruned_total",
    "Enrolled credentials removed after the provider rejected them at fetch time",
)


class ResourceFetcher:
    def __init__(self, provider: ProviderClient):
        self._provider = provider

    async def video_url(self, session: AsyncSession, batch_id: str, child_id: str) -> dict[str, Any]:
        store = CredentialStore(session)
        batch = await store.get_batch_by_external_id(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)

        for token in await store.candidate_tokens(batch.id):
            owner_id = token.owner_id
            try:
                return await self._provider.video_url_details(
                    token.access_token, token.correlation_id, batch_id, child_id
                )
            except ProviderAuthError:
                logger.warning("Credential of owner_id=%s rejected for batch %s; removing it", owner_id, batch_id)
                await store.prune_token(batch.id, owner_id)
                await session.commit()
                FALLBACK_PRUNED_TOTAL.inc()
                await self._drop_entitlement(session, owner_id, batch_id)
        raise BatchUnavailable(batch_id)

    async def _drop_entitlement(self, session: AsyncSession, owner_id: int, batch_id: str) -> None:
        """Best-effort: the batch stays usable through other credentials even if this fails."""
        try:
            await CredentialStore(session).remove_entitlement(owner_id, batch_id)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning("Could not remove entitlement %s from owner_id=%s: %s", batch_id, owner_id, e)
