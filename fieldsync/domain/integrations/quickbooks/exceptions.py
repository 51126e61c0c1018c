"""QuickBooks integration errors"""

from typing import Optional


class QuickBooksError(Exception):
    """Base class for QuickBooks integration failures"""

    pass


class QuickBooksNotConfiguredError(QuickBooksError):
    """Raised when the OAuth client credentials are missing"""

    pass


class NoActiveConnectionError(QuickBooksError):
    """Raised when no active QuickBooks connection exists"""

    def __init__(self, message: str = "No active QuickBooks connection"):
        super().__init__(message)


class QuickBooksAuthError(QuickBooksError):
    """Raised when a token exchange or refresh is rejected"""

    pass


class QuickBooksAPIError(QuickBooksError):
    """Raised when the QuickBooks API answers with a non-2xx status"""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"QuickBooks API request failed: {status_code} {body}")

    @property
    def is_transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class StaleMappingError(QuickBooksError):
    """Raised when a mapping's sync version changed between read and write"""

    def __init__(self, local_entity_type: str, local_entity_id: int, expected_version: Optional[str]):
        self.local_entity_type = local_entity_type
        self.local_entity_id = local_entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Mapping {local_entity_type}:{local_entity_id} changed concurrently "
            f"(expected sync version {expected_version})"
        )
