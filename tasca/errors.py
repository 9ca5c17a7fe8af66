# tasca/errors.py
"""Exceptions raised by the card store and its collaborators."""
from typing import Any, List, Optional


class TascaError(Exception):
    """Base exception for all card store errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(TascaError):
    """Raised before any write when a record is missing required data."""
    pass


class NoSessionError(TascaError):
    """Raised when a mutating operation has no resolvable current user."""
    def __init__(self, message: str = 'No active session: please log in'):
        super().__init__(message, status_code=401)


class NotFoundError(TascaError):
    pass


class AuthenticationError(TascaError):
    """Raised when credentials are rejected or missing in cloud mode."""
    pass


class BackendError(TascaError):
    """Raised when the remote store rejects a request."""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message, status_code=status_code)
        self.details = details


class SchemaDriftError(BackendError):
    """Unknown-column failure that survived the reduced-payload retry."""
    def __init__(self, message: str, dropped_columns: Optional[List[str]] = None,
                 status_code: Optional[int] = None, details: Any = None):
        self.dropped_columns = list(dropped_columns or [])
        if self.dropped_columns:
            message = f"{message} (retried without: {', '.join(self.dropped_columns)})"
        super().__init__(message, status_code=status_code, details=details)


class ConnectionError(BackendError):
    """Raised when the remote store or a provider cannot be reached."""
    pass


class PermissionDeniedError(TascaError):
    """Raised when a user tries to change a card owned by someone else."""
    def __init__(self, message: str = 'Only the owner can change this card'):
        super().__init__(message, status_code=403)
