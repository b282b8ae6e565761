"""Pydantic schemas for upstream provider payloads."""

from typing import Any

from pydantic import BaseModel


class ProviderTokens(BaseModel):
    """OAuth-style credential pair issued by the provider."""

    access_token: str
    refresh_token: str


class PurchasedBatch(BaseModel):
    """One entry of the provider's purchased-batch list."""

    id: str
    name: str | None = None
    is_blocked: bool = False
    raw: dict[str, Any] | None = None
