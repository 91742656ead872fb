"""
Error taxonomy for catalog operations.

Each error carries the HTTP status the API layer reports it with, so the
boundary can render failures without inspecting messages.
"""

from typing import Dict, Optional


class CatalogError(Exception):
    """Base class for all user-visible catalog failures."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


class InvalidInput(CatalogError):
    """Malformed id, failed field validation, no-op update or unsupported upload."""

    status_code = 400
    default_message = "Invalid input"


class Conflict(CatalogError):
    """A unique value (such as a username) is already taken."""

    status_code = 400
    default_message = "Resource already exists"


class Unauthenticated(CatalogError):
    """Missing, malformed or expired credential, or a credential for a removed user."""

    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(CatalogError):
    """Role or ownership denial."""

    status_code = 403
    default_message = "Forbidden: You do not have permission to perform this action"


class NotFound(CatalogError):
    """Record absent, or present but invisible to the requester."""

    status_code = 404
    default_message = "Book not found"


class StorageFailure(CatalogError):
    """The attachment store could not persist a required upload."""

    status_code = 500
    default_message = "Attachment storage unavailable"
