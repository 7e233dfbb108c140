"""
Error taxonomy for the ShareHub core.

Every error raised by the storage and lifecycle engine derives from
ShareHubError so the request layer can translate them in one place.
"""

from __future__ import annotations

from enum import Enum


class DenyReason(str, Enum):
    """Why the access policy refused a request."""
    FORBIDDEN = "forbidden"
    BAD_PASSWORD = "bad_password"
    EXPIRED = "expired"


class ShareHubError(Exception):
    """Base class for all core errors."""
    pass


class ValidationError(ShareHubError):
    """
    Raised when caller-supplied input is missing or invalid.

    Attributes:
        field: Name of the offending input, when a single one is to blame
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ShareHubError):
    """Raised when a referenced file, folder or storage key does not exist."""
    pass


class AccessDeniedError(ShareHubError):
    """
    Raised when the access policy denies a request.

    Attributes:
        reason: DenyReason explaining the denial. The request layer decides
            how much of it to reveal.
    """

    def __init__(self, reason: DenyReason, message: str | None = None):
        self.reason = DenyReason(reason)
        super().__init__(message or f"Access denied ({self.reason.value})")


class ExpiredError(AccessDeniedError):
    """Access denied because the file expired by time or by view count."""

    def __init__(self, message: str | None = None):
        super().__init__(DenyReason.EXPIRED, message)


class StorageError(ShareHubError):
    """Raised when a storage backend I/O operation fails."""
    pass


class ThumbnailError(ShareHubError):
    """Raised inside the offload worker when a thumbnail cannot be produced."""
    pass


__all__ = [
    "DenyReason",
    "ShareHubError",
    "ValidationError",
    "NotFoundError",
    "AccessDeniedError",
    "ExpiredError",
    "StorageError",
    "ThumbnailError",
]
