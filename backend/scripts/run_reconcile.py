#!/usr/bin/env python3
"""Run one credential reconcile sweep and exit (for cron / external schedulers).
Usage: DATABASE_URL=... python scripts/run_reconcile.py"""
import asyncio
import logging
import sys

import httpx

from batchkeeper.config import get_settings
from batchkeeper.db.session import create_engine, create_session_maker
from batchkeeper.services.notifier import TelegramNotifier
from batchkeeper.services.provider_client import ProviderClient
from batchkeeper.services.reconciler import BatchCredentialReconciler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)


async def main() -> int:
    settings = get_settings()
    engine = create_engine(settings)
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        reconciler = BatchCredentialReconciler(
            settings,
            ProviderClient(settings, client),
            create_session_maker(engine),
            TelegramNotifier(settings, client),
        )
        try:
            summary = await reconciler.run(trigger="cli")
        finally:
            await engine.dispose()
    print(
        f"run={summary.run_id} status={summary.status} refreshed={summary.refreshed}/"
        f"{summary.credentials_total} failed={summary.failed + summary.errors} pruned={summary.pruned}"
    )
    return 0 if summary.status == "done" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
