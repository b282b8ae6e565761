"""
Batch credential reconciler: refresh every distinct provider credential held by
active batches exactly once, and fan the new pair out to every entry carrying it.

Many batches can hold the same (owner, refresh token) pair. The provider spends a
refresh token on use, so refreshing it twice would fail the second call and
invalidate sibling batches; the sweep therefore deduplicates by that pair and
serializes work per pair with an in-process lock.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from batchkeeper.config import Settings
from batchkeeper.core.time import format_local, utcnow
from batchkeeper.models.batch import Batch
from batchkeeper.models.reconcile_run import ReconcileRun
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.services.errors import ProviderError
from batchkeeper.services.notifier import TelegramNotifier
from batchkeeper.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)

REFRESH_TOTAL = Counter(
    "batchkeeper_provider_refresh_total",
    "Provider credential refresh attempts by the reconciler",
    ["outcome"],
)

OUTCOME_REFRESHED = "refreshed"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class CredentialKey:
    owner_id: int
    refresh_token: str


@dataclass
class ReconcileSummary:
    run_id: int | None = None
    status: str = "done"
    batches_scanned: int = 0
    credentials_total: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    pruned: int = 0

    def record(self, outcome: str) -> None:
        if outcome == OUTCOME_REFRESHED:
            self.refreshed += 1
        elif outcome == OUTCOME_FAILED:
            self.failed += 1
        elif outcome == OUTCOME_SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def build_credential_map(batches: list[Batch]) -> dict[CredentialKey, list[int]]:
    """Group valid credentials by (owner, refresh token) -> ids of the batches holding them."""
    token_map: dict[CredentialKey, list[int]] = {}
    for batch in batches:
        for token in batch.enrolled_tokens:
            if not token.is_valid or not token.refresh_token:
                continue
            key = CredentialKey(owner_id=token.owner_id, refresh_token=token.refresh_token)
            token_map.setdefault(key, []).append(batch.id)
    return token_map


def format_summary(summary: ReconcileSummary, tz_name: str) -> str:
    lines = [
        "*Batch Tokens Refreshed*" if summary.status == "done" else f"*Batch Token Refresh {summary.status}*",
        "",
        f"*Date ({tz_name}):* {format_local(utcnow(), tz_name)}",
        f"*Batches Scanned:* {summary.batches_scanned}",
        f"*Tokens Refreshed:* {summary.refreshed}/{summary.credentials_total}",
    ]
    if summary.failed or summary.errors:
        lines.append(f"*Tokens Failed:* {summary.failed + summary.errors}")
    if summary.pruned:
        lines.append(f"*Stale Tokens Pruned:* {summary.pruned}")
    return "\n".join(lines)


class BatchCredentialReconciler:
    def __init__(
        self,
        settings: Settings,
        provider: ProviderClient,
        session_maker: async_sessionmaker[AsyncSession],
        notifier: TelegramNotifier | None = None,
    ):
        self._settings = settings
        self._provider = provider
        self._session_maker = session_maker
        self._notifier = notifier
        self._key_locks: dict[CredentialKey, _KeyLock] = {}

    @asynccontextmanager
    async def _key_guard(self, key: CredentialKey):
        """Mutual exclusion per credential key, shared by overlapping sweeps of this instance."""
        entry = self._key_locks.get(key)
        if entry is None:
            entry = self._key_locks[key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._key_locks.pop(key, None)

    async def run(self, trigger: str = "manual") -> ReconcileSummary:
        async with self._session_maker() as session:
            batches = await CredentialStore(session).list_active_batches()
            token_map = build_credential_map(batches)
            run = ReconcileRun(
                status="running",
                trigger=trigger,
                batches_scanned=len(batches),
                credentials_total=len(token_map),
            )
            session.add(run)
            await session.commit()
            run_id = run.id

        summary = ReconcileSummary(
            run_id=run_id,
            batches_scanned=len(batches),
            credentials_total=len(token_map),
        )
        logger.info(
            "Reconcile run %s (%s): %s active batches, %s distinct credentials",
            run_id, trigger, len(batches), len(token_map),
        )

        sem = asyncio.Semaphore(max(1, self._settings.reconcile_concurrency))

        async def worker(key: CredentialKey, batch_ids: list[int]) -> None:
            async with sem:
                summary.record(await self.refresh_credential(key, batch_ids))

        try:
            await asyncio.wait_for(
                asyncio.gather(*[worker(key, batch_ids) for key, batch_ids in token_map.items()]),
                timeout=self._settings.reconcile_timeout_seconds,
            )
        except asyncio.TimeoutError:
            summary.status = "timed_out"
            logger.warning(
                "Reconcile run %s exceeded %ss; %s credentials left unprocessed",
                run_id,
                self._settings.reconcile_timeout_seconds,
                summary.credentials_total - summary.refreshed - summary.failed - summary.skipped - summary.errors,
            )

        summary.pruned = await self._prune_stale_invalid()
        await self._finish_run(summary)
        logger.info(
            "Reconcile run %s %s: refreshed=%s failed=%s skipped=%s errors=%s pruned=%s",
            run_id, summary.status, summary.refreshed, summary.failed,
            summary.skipped, summary.errors, summary.pruned,
        )
        if self._notifier is not None:
            await self._notifier.send(format_summary(summary, self._settings.notify_timezone))
        return summary

    async def refresh_credential(self, key: CredentialKey, batch_ids: list[int]) -> str:
        """Refresh one credential and fan it out. Never raises for per-credential failures."""
        async with self._key_guard(key):
            try:
                return await self._refresh_locked(key, batch_ids)
            except Exception as e:
                logger.exception("Reconcile worker for owner_id=%s failed: %s", key.owner_id, e)
                REFRESH_TOTAL.labels(outcome=OUTCOME_ERROR).inc()
                return OUTCOME_ERROR

    async def _refresh_locked(self, key: CredentialKey, batch_ids: list[int]) -> str:
        # Another sweep may already have spent this refresh token.
        async with self._session_maker() as session:
            remaining = await CredentialStore(session).count_valid_matching(key.owner_id, key.refresh_token)
        if not remaining:
            logger.debug("Credential of owner_id=%s already rotated; skipping", key.owner_id)
            REFRESH_TOTAL.labels(outcome=OUTCOME_SKIPPED).inc()
            return OUTCOME_SKIPPED

        correlation_id = str(uuid.uuid4())
        try:
            tokens = await self._provider.refresh(key.refresh_token, correlation_id)
        except ProviderError as e:
            async with self._session_maker() as session:
                rows = await CredentialStore(session).mark_refresh_failed(key.owner_id, key.refresh_token, utcnow())
                await session.commit()
            logger.warning(
                "Refresh rejected for owner_id=%s (batches=%s, entries invalidated=%s): %s",
                key.owner_id, batch_ids, rows, e,
            )
            REFRESH_TOTAL.labels(outcome=OUTCOME_FAILED).inc()
            return OUTCOME_FAILED

        async with self._session_maker() as session:
            store = CredentialStore(session)
            rows = await store.apply_refreshed_credential(
                key.owner_id,
                key.refresh_token,
                tokens.access_token,
                tokens.refresh_token,
                correlation_id,
                utcnow(),
            )
            await store.update_user_provider_credential(
                key.owner_id, tokens.access_token, tokens.refresh_token, correlation_id
            )
            await session.commit()
        logger.debug("Refreshed credential of owner_id=%s across %s entries", key.owner_id, rows)
        REFRESH_TOTAL.labels(outcome=OUTCOME_REFRESHED).inc()
        return OUTCOME_REFRESHED

    async def _prune_stale_invalid(self) -> int:
        days = self._settings.invalid_token_retention_days
        if days <= 0:
            return 0
        async with self._session_maker() as session:
            pruned = await CredentialStore(session).prune_stale_invalid_tokens(utcnow() - timedelta(days=days))
            await session.commit()
        return pruned

    async def _finish_run(self, summary: ReconcileSummary) -> None:
        async with self._session_maker() as session:
            r = await session.execute(select(ReconcileRun).where(ReconcileRun.id == summary.run_id))
            run = r.scalar_one()
            run.status = summary.status
            run.refreshed = summary.refreshed
            run.failed = summary.failed + summary.errors
            run.pruned = summary.pruned
            run.finished_at = utcnow()
            if summary.status == "timed_out":
                run.error_message = f"Sweep exceeded {self._settings.reconcile_timeout_seconds}s"
            await session.commit()
