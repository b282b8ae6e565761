"""
Upstream content provider client: token refresh, video URL details, purchased batches.
Every call goes through _request() so status codes are classified the same way:
401/403 -> ProviderAuthError (the credential is at fault), anything else -> ProviderError.
"""
import logging
from typing import Any

import httpx

from batchkeeper.config import Settings
from batchkeeper.schemas.provider import ProviderTokens, PurchasedBatch
from batchkeeper.services.errors import ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

AUTH_REJECTED_STATUSES = (401, 403)


def _log_response_error(method: str, path: str, response: httpx.Response) -> None:
    """Log HTTP error without credentials."""
    body = (response.text or "")[:300]
    logger.warning("Provider %s %s -> %s body=%s", method, path, response.status_code, body)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return f"Provider responded with {response.status_code}"


class ProviderClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._http = http_client
        self._base_url = settings.provider_base_url.rstrip("/")
        self._timeout = settings.provider_timeout_seconds

    def _resource_headers(self, access_token: str, correlation_id: str) -> dict[str, str]:
        return {
            "accept": "application/json, text/plain, */*",
            "authorization": f"Bearer {access_token.strip()}",
            "client-id": self._settings.provider_organization_id,
            "client-type": "WEB",
            "randomid": correlation_id,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            r = await self._http.request(method, url, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Provider request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider request failed: {type(e).__name__}") from e
        if r.status_code in AUTH_REJECTED_STATUSES:
            raise ProviderAuthError(_error_message(r), status_code=r.status_code)
        if r.status_code >= 400:
            _log_response_error(method, path, r)
            raise ProviderError(_error_message(r), status_code=r.status_code)
        try:
            return r.json() if r.content else None
        except ValueError as e:
            raise ProviderError("Provider returned malformed JSON", status_code=r.status_code) from e

    async def refresh(self, refresh_token: str, correlation_id: str) -> ProviderTokens:
        """Exchange a refresh token for a new access/refresh pair. The old refresh token is spent upstream."""
        data = await self._request(
            "POST",
            "/v3/oauth/refresh-token",
            json={"refresh_token": refresh_token, "client_id": self._settings.provider_client_id},
            headers={"Content-Type": "application/json", "Randomid": correlation_id},
        )
        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict):
            raise ProviderError("Refresh response missing data")
        access = payload.get("access_token")
        refresh = payload.get("refresh_token")
        if not access or not refresh:
            raise ProviderError("Refresh response missing tokens")
        return ProviderTokens(access_token=access, refresh_token=refresh)

    async def video_url_details(
        self,
        access_token: str,
        correlation_id: str,
        batch_id: str,
        child_id: str,
    ) -> dict[str, Any]:
        params = {
            "type": "BATCHES",
            "videoContainerType": "DASH",
            "reqType": "query",
            "childId": child_id,
            "parentId": batch_id,
            "clientVersion": "201",
        }
        data = await self._request(
            "GET",
            "/v1/videos/video-url-details",
            params=params,
            headers=self._resource_headers(access_token, correlation_id),
        )
        if not isinstance(data, dict):
            raise ProviderError("Video URL response is not an object")
        return data

    async def purchased_batches(self, access_token: str, correlation_id: str) -> list[PurchasedBatch]:
        """First page of the user's purchased batches. Items may be wrapped as {"batch": {...}}."""
        data = await self._request(
            "GET",
            "/batch-service/v1/batches/purchased-batches",
            params={"page": 1, "type": "ALL", "amount": "paid"},
            headers=self._resource_headers(access_token, correlation_id),
        )
        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("data"), list):
            return []
        out: list[PurchasedBatch] = []
        for item in data["data"]:
            if not isinstance(item, dict):
                continue
            batch = item.get("batch") if isinstance(item.get("batch"), dict) else item
            batch_id = batch.get("_id") or batch.get("id")
            if not batch_id:
                continue
            out.append(
                PurchasedBatch(
                    id=str(batch_id),
                    name=batch.get("name"),
                    is_blocked=bool(batch.get("isBlocked")),
                    raw=batch,
                )
            )
        return out

    async def batch_details(self, batch_id: str) -> dict[str, Any] | None:
        data = await self._request("GET", f"/v3/batches/{batch_id}/details")
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return None
