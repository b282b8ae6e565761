"""Shared pagination schema for page-numbered list endpoints."""

from pydantic import BaseModel

PAGE_SIZE = 10


class PaginatedResponse(BaseModel):
    """Standard paginated response: items + total + page info."""

    items: list
    total: int
    page: int
    total_pages: int
    has_more: bool
