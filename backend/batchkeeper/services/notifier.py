"""Telegram log channel: human-readable operational summaries."""

import logging

import httpx

from batchkeeper.config import Settings

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramNotifier:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._token = settings.telegram_bot_token.strip()
        self._chat_id = settings.telegram_chat_id.strip()
        self._http = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._chat_id)

    async def send(self, text: str) -> None:
        """Post a Markdown message. Fire-and-forget; logs errors."""
        if not self.enabled:
            logger.info("Notification (no sink configured): %s", text.strip())
            return
        try:
            r = await self._http.post(
                f"{TELEGRAM_API_BASE}/bot{self._token}/sendMessage",
                json={"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"},
            )
            if r.status_code >= 400:
                logger.warning("Telegram sendMessage -> %s", r.status_code)
        except httpx.HTTPError as e:
            logger.warning("Telegram send failed: %s", e)
