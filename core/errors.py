"""Error taxonomy shared by the Google Sheets synchronisation layer."""
from __future__ import annotations

from typing import Optional


class SheetsSyncError(Exception):
    """Base exception for every remote synchronisation failure."""


class NotConfiguredError(SheetsSyncError):
    """Raised when the credential bundle is incomplete."""

    def __init__(self, message: str = "Google Sheets not configured") -> None:
        super().__init__(message)


class AuthError(SheetsSyncError):
    """Raised when the refresh token cannot be exchanged for an access token."""


class ApiError(SheetsSyncError):
    """Raised when the Sheets API answers with a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        self.status = status
        self.message = message or ""
        detail = f" - {self.message}" if self.message else ""
        super().__init__(f"Google Sheets API error: {status}{detail}")


class NotFoundError(SheetsSyncError):
    """Raised when an expected master row or sheet is absent."""


class NetworkError(SheetsSyncError):
    """Raised when the request never produced an HTTP response."""


__all__ = [
    "ApiError",
    "AuthError",
    "NetworkError",
    "NotConfiguredError",
    "NotFoundError",
    "SheetsSyncError",
]
