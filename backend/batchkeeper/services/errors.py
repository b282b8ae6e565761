"""Domain exceptions raised by services and mapped to HTTP responses in main."""

from __future__ import annotations


class SessionError(Exception):
    """Application session could not be authenticated; cookies must be cleared."""

    detail = "Unauthorized"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class SessionMissing(SessionError):
    detail = "Unauthorized: No tokens provided"


class SessionInvalid(SessionError):
    detail = "Unauthorized: Invalid session"


class ProviderError(Exception):
    """Upstream provider call failed for a reason not attributable to the credential."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Provider rejected the credential itself (401/403)."""


class BatchNotFound(Exception):
    def __init__(self, batch_id: str):
        super().__init__(f"Batch {batch_id} not found")
        self.batch_id = batch_id


class BatchUnavailable(Exception):
    """Every stored credential for the batch was rejected or none was usable."""

    message = "This batch is unavailable. Please contact admin to add this batch."

    def __init__(self, batch_id: str):
        super().__init__(self.message)
        self.batch_id = batch_id
