"""
Session Error Hierarchy.

Every failure the session engine raises derives from ``SessionError`` and
carries an ``AuthErrorCode`` so callers can react by category instead of
by message.  Storage and biometric failures are normally swallowed at
their source; these exceptions surface the network and authentication
failures that orchestration logic must see.
"""

from __future__ import annotations

from typing import ClassVar, Optional

from storefront.models.auth_models import AuthErrorCode


class SessionError(Exception):
    """Base class for all session engine errors."""

    code: ClassVar[AuthErrorCode] = AuthErrorCode.UNKNOWN_ERROR
    default_message: ClassVar[str] = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NetworkUnavailableError(SessionError):
    """Device offline or backend unreachable.  Recoverable by retrying."""

    code = AuthErrorCode.NETWORK_UNAVAILABLE
    default_message = "No internet connection."


class BackendTimeoutError(NetworkUnavailableError):
    """A bounded request ran out of time."""

    code = AuthErrorCode.TIMEOUT
    default_message = "The request timed out. Check your internet connection."


class AuthInvalidError(SessionError):
    """Bad credentials or an unrecoverable session.  Needs re-authentication."""

    code = AuthErrorCode.AUTH_INVALID
    default_message = "Authentication is required."


class TokenMissingError(AuthInvalidError):
    """No access token in cache or storage, and refresh produced none."""

    default_message = "Access token not found."


class StorageUnavailableError(SessionError):
    """The secure tier cannot be used on this device."""

    code = AuthErrorCode.STORAGE_UNAVAILABLE
    default_message = "Secure storage is not available on this device."


class PinMismatchError(SessionError):
    """Entered PIN (or its confirmation) did not match."""

    code = AuthErrorCode.PIN_MISMATCH
    default_message = "Incorrect PIN."


class BackendResponseError(SessionError):
    """The backend answered with an unexpected status or body."""

    code = AuthErrorCode.BACKEND_ERROR

    def __init__(self, message: Optional[str] = None, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code: int = status_code
