"""
Purchased-batch synchronization: attach the user's provider credential to every
batch they bought and refresh it on every batch they already hold.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batchkeeper.core.time import utcnow
from batchkeeper.models.user import User
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.schemas.provider import PurchasedBatch
from batchkeeper.services.errors import ProviderAuthError, ProviderError
from batchkeeper.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentSyncResult:
    batches_synced: int
    tokens_updated: int


def _batch_fields(purchased: PurchasedBatch, details: dict[str, Any] | None) -> dict[str, Any]:
    details = details or {}
    preview = details.get("previewImage") or {}
    image = details.get("iosPreviewImageUrl")
    if not image and preview.get("baseUrl") and preview.get("key"):
        image = preview["baseUrl"] + preview["key"]
    fee = details.get("fee") or {}
    return {
        "name": details.get("name") or purchased.name or "Unknown Batch",
        "price": float(fee.get("total") or 0),
        "image_url": image or None,
        "template": details.get("template") or "NORMAL",
        "language": details.get("language") or "English",
        "by_name": details.get("byName") or "Unknown",
        "start_date": details.get("startDate") or "",
        "end_date": details.get("endDate") or "",
        "is_active": not (details.get("isBlocked") or purchased.is_blocked),
    }


async def sync_purchased_batches(
    session: AsyncSession,
    provider: ProviderClient,
    user: User,
) -> EnrollmentSyncResult:
    """
    Upsert the user's purchased batches with their credential attached, then write
    the credential to every entry the user owns. Raises ProviderAuthError when the
    user's cached credential is no longer accepted.
    """
    if not user.provider_access_token or not user.provider_refresh_token:
        raise ProviderAuthError("No provider credential on file; log in again")
    if not user.provider_correlation_id:
        user.provider_correlation_id = str(uuid.uuid4())
    correlation_id = user.provider_correlation_id
    purchased = await provider.purchased_batches(user.provider_access_token, str(uuid.uuid4()))
    store = CredentialStore(session)
    now = utcnow()
    for item in purchased:
        try:
            details = await provider.batch_details(item.id)
        except ProviderError as e:
            logger.warning("Batch details for %s unavailable: %s", item.id, e)
            details = None
        fields = _batch_fields(item, details)
        batch = await store.upsert_batch(item.id, fields)
        await store.upsert_enrolled_token(
            batch,
            user.id,
            user.provider_access_token,
            user.provider_refresh_token,
            correlation_id,
            now,
        )
        await store.add_entitlement(user.id, item.id, fields["name"])
    updated = await store.fan_out_owner_credential(
        user.id,
        user.provider_access_token,
        user.provider_refresh_token,
        correlation_id,
        now,
    )
    await session.commit()
    logger.info("Synced %s purchased batches for user_id=%s (%s entries updated)", len(purchased), user.id, updated)
    return EnrollmentSyncResult(batches_synced=len(purchased), tokens_updated=updated)
