"""
Exception hierarchy for QuestLog.

Input errors are raised before any I/O and map to HTTP 400. Provider and
store errors are caught inside the search pipeline and degrade the response
instead of failing it.
"""


class QuestLogError(Exception):
    """Base class for all QuestLog errors."""


class SearchValidationError(QuestLogError, ValueError):
    """Raised when a search request is malformed."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class ProviderError(QuestLogError):
    """Upstream catalog provider failed (transport, status or payload)."""

    def __init__(self, provider_id: str, message: str, status_code: int = None):
        self.provider_id = provider_id
        self.status_code = status_code
        super().__init__(f"{provider_id}: {message}")


class ProviderAuthError(ProviderError):
    """Access token exchange with the provider failed."""


class CatalogStoreError(QuestLogError):
    """Reading or writing the local catalog cache failed."""
