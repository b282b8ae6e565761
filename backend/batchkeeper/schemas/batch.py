"""Public batch views and enrollment bodies. Credential fields are never exposed."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    name: str
    price: float
    image_url: str | None = None
    template: str
    language: str
    by_name: str
    start_date: str
    end_date: str
    created_at: datetime | None = None


class EnrollBody(BaseModel):
    batch_id: str = Field(..., min_length=1, max_length=64)
    name: str | None = Field(None, max_length=255)


class SyncResult(BaseModel):
    batches_synced: int
    tokens_updated: int


class ReconcileRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    trigger: str
    batches_scanned: int
    credentials_total: int
    refreshed: int
    failed: int
    pruned: int
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
