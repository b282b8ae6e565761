"""
Persistence for users, batches and their enrolled provider credentials.

Every write is a single UPDATE/DELETE matched by predicate (owner + refresh token,
owner alone, or batch + owner), never a fetch-modify-save of the whole row set,
so concurrent requests and reconciler workers do not overwrite each other.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from batchkeeper.core.time import utcnow
from batchkeeper.models.batch import Batch, EnrolledToken
from batchkeeper.models.reconcile_run import ReconcileRun
from batchkeeper.models.user import User, UserBatchEntitlement


class CredentialStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # --- batches ---

    async def list_active_batches(self) -> list[Batch]:
        r = await self.session.execute(
            select(Batch)
            .where(Batch.is_active.is_(True))
            .options(selectinload(Batch.enrolled_tokens))
            .order_by(Batch.id)
        )
        return list(r.scalars().all())

    async def get_batch_by_external_id(self, batch_id: str) -> Batch | None:
        r = await self.session.execute(select(Batch).where(Batch.batch_id == batch_id))
        return r.scalar_one_or_none()

    async def list_batches_page(self, page: int, per_page: int) -> tuple[list[Batch], int]:
        """Newest first. Returns (rows, total)."""
        base = select(Batch).order_by(Batch.created_at.desc(), Batch.id.desc())
        total = (await self.session.execute(select(func.count()).select_from(Batch))).scalar() or 0
        r = await self.session.execute(base.offset((page - 1) * per_page).limit(per_page))
        return list(r.scalars().all()), int(total)

    async def upsert_batch(self, batch_id: str, fields: dict[str, Any]) -> Batch:
        batch = await self.get_batch_by_external_id(batch_id)
        if batch is None:
            batch = Batch(batch_id=batch_id, **fields)
            self.session.add(batch)
        else:
            for key, value in fields.items():
                setattr(batch, key, value)
        await self.session.flush()
        return batch

    # --- enrolled tokens ---

    async def candidate_tokens(self, batch_pk: int) -> list[EnrolledToken]:
        """Usable credentials of a batch, most recently updated first (ties: oldest row first)."""
        r = await self.session.execute(
            select(EnrolledToken)
            .where(
                EnrolledToken.batch_pk == batch_pk,
                EnrolledToken.is_valid.is_(True),
                EnrolledToken.access_token != "",
                EnrolledToken.correlation_id.is_not(None),
                EnrolledToken.correlation_id != "",
            )
            .order_by(EnrolledToken.updated_at.desc(), EnrolledToken.id.asc())
        )
        return list(r.scalars().all())

    async def count_valid_matching(self, owner_id: int, refresh_token: str) -> int:
        r = await self.session.execute(
            select(func.count())
            .select_from(EnrolledToken)
            .where(
                EnrolledToken.owner_id == owner_id,
                EnrolledToken.refresh_token == refresh_token,
                EnrolledToken.is_valid.is_(True),
            )
        )
        return int(r.scalar_one())

    async def apply_refreshed_credential(
        self,
        owner_id: int,
        old_refresh_token: str,
        access_token: str,
        refresh_token: str,
        correlation_id: str,
        now: datetime | None = None,
    ) -> int:
        """Replace the credential on every entry still carrying (owner, old refresh token). Returns rows updated."""
        r = await self.session.execute(
            update(EnrolledToken)
            .where(
                EnrolledToken.owner_id == owner_id,
                EnrolledToken.refresh_token == old_refresh_token,
            )
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                correlation_id=correlation_id,
                is_valid=True,
                updated_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def mark_refresh_failed(self, owner_id: int, old_refresh_token: str, now: datetime | None = None) -> int:
        r = await self.session.execute(
            update(EnrolledToken)
            .where(
                EnrolledToken.owner_id == owner_id,
                EnrolledToken.refresh_token == old_refresh_token,
            )
            .values(is_valid=False, updated_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def fan_out_owner_credential(
        self,
        owner_id: int,
        access_token: str,
        refresh_token: str,
        correlation_id: str,
        now: datetime | None = None,
    ) -> int:
        """Write the owner's current credential to every entry they own, in any batch."""
        r = await self.session.execute(
            update(EnrolledToken)
            .where(EnrolledToken.owner_id == owner_id)
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                correlation_id=correlation_id,
                is_valid=True,
                updated_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def upsert_enrolled_token(
        self,
        batch: Batch,
        owner_id: int,
        access_token: str,
        refresh_token: str,
        correlation_id: str | None,
        now: datetime | None = None,
    ) -> None:
        """At most one entry per (batch, owner): update it in place or create it."""
        values = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "correlation_id": correlation_id,
            "is_valid": True,
            "updated_at": now or utcnow(),
        }
        r = await self.session.execute(
            update(EnrolledToken)
            .where(EnrolledToken.batch_pk == batch.id, EnrolledToken.owner_id == owner_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if not r.rowcount:
            self.session.add(EnrolledToken(batch_pk=batch.id, owner_id=owner_id, **values))
            await self.session.flush()

    async def prune_token(self, batch_pk: int, owner_id: int) -> int:
        r = await self.session.execute(
            delete(EnrolledToken)
            .where(EnrolledToken.batch_pk == batch_pk, EnrolledToken.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def prune_stale_invalid_tokens(self, cutoff: datetime) -> int:
        """Delete invalid entries not revived since cutoff."""
        r = await self.session.execute(
            delete(EnrolledToken)
            .where(EnrolledToken.is_valid.is_(False), EnrolledToken.updated_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    # --- users ---

    async def get_user(self, user_id: int) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def update_user_provider_credential(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        correlation_id: str,
    ) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                provider_access_token=access_token,
                provider_refresh_token=refresh_token,
                provider_correlation_id=correlation_id,
                updated_at=utcnow(),
            )
        )

    async def rotate_app_refresh_token(self, user_id: int, presented: str, new_token: str) -> bool:
        """Swap the application refresh token only if it still equals the presented one."""
        r = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token == presented)
            .values(refresh_token=new_token, updated_at=utcnow())
        )
        return r.rowcount == 1

    async def revoke_app_refresh_token(self, user_id: int) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=None, updated_at=utcnow())
        )

    async def add_entitlement(self, user_id: int, batch_id: str, name: str) -> bool:
        """Returns False when the user already holds the batch."""
        r = await self.session.execute(
            select(UserBatchEntitlement.id).where(
                UserBatchEntitlement.user_id == user_id,
                UserBatchEntitlement.batch_id == batch_id,
            )
        )
        if r.scalar_one_or_none() is not None:
            return False
        self.session.add(UserBatchEntitlement(user_id=user_id, batch_id=batch_id, name=name))
        await self.session.flush()
        return True

    async def remove_entitlement(self, user_id: int, batch_id: str) -> int:
        r = await self.session.execute(
            delete(UserBatchEntitlement)
            .where(UserBatchEntitlement.user_id == user_id, UserBatchEntitlement.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount or 0

    async def list_entitlements(self, user_id: int) -> list[UserBatchEntitlement]:
        r = await self.session.execute(
            select(UserBatchEntitlement)
            .where(UserBatchEntitlement.user_id == user_id)
            .order_by(UserBatchEntitlement.id)
        )
        return list(r.scalars().all())

    # --- reconcile runs ---

    async def list_recent_runs(self, limit: int) -> list[ReconcileRun]:
        r = await self.session.execute(
            select(ReconcileRun).order_by(ReconcileRun.started_at.desc(), ReconcileRun.id.desc()).limit(limit)
        )
        return list(r.scalars().all())
