"""
Authentication Pipeline Models.

Pydantic models and enumerations for the contracts between the session
engine, the backend and the screens that consume it.

Every UI-facing operation returns a structured, inspectable result
rather than raw strings or exception side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from storefront.models.enums import Accessibility, FlowState, PinCheckStatus, Route
from storefront.models.user import UserProfile


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of session error categories.

    Attached to every ``SessionError`` subclass and to failed
    ``AuthResult`` objects so the UI can pick its feedback.
    """

    NETWORK_UNAVAILABLE = "network_unavailable"
    TIMEOUT = "timeout"
    AUTH_INVALID = "auth_invalid"
    INVALID_CREDENTIALS = "invalid_credentials"
    SUBSCRIPTION_SUSPENDED = "subscription_suspended"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    PIN_MISMATCH = "pin_mismatch"
    BACKEND_ERROR = "backend_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Backend message mapping
# ---------------------------------------------------------------------------

# Order matters: the first matching rule wins.  Each rule is the set of
# fragments that must all appear in the lower-cased message.
BACKEND_ERROR_MAP: list[tuple[tuple[str, ...], AuthErrorCode, str]] = [
    (
        ("403", "login failed"),
        AuthErrorCode.SUBSCRIPTION_SUSPENDED,
        "Access denied. Your subscription is suspended.",
    ),
    (
        ("invalid credentials",),
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect login or password.",
    ),
    (
        ("login failed",),
        AuthErrorCode.AUTH_INVALID,
        "Authorization failed.",
    ),
    (
        ("network error",),
        AuthErrorCode.NETWORK_UNAVAILABLE,
        "Network error. Check your connection.",
    ),
    (
        ("timeout",),
        AuthErrorCode.TIMEOUT,
        "The request timed out.",
    ),
]


# ---------------------------------------------------------------------------
# Wire contracts
# ---------------------------------------------------------------------------

class LoginResponse(BaseModel):
    """Body of ``POST /auth/login`` and ``POST /auth/activate``."""

    access_token: str = Field(min_length=1)
    token_type: str = "bearer"
    refresh_token: Optional[str] = None


class RefreshResponse(BaseModel):
    """Body of ``POST /auth/refresh``.

    A missing ``refresh_token`` means the server did not rotate it and
    the caller keeps the previous one.
    """

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None


class SecureWriteOptions(BaseModel):
    """Persistence options for secure-tier writes.

    Tokens are gated by the app's own PIN/biometric flow, so the storage
    layer never requires user presence on read.
    """

    require_authentication: bool = False
    accessibility: Accessibility = Accessibility.AFTER_FIRST_UNLOCK

    model_config = {"frozen": True}


DEFAULT_WRITE_OPTIONS: SecureWriteOptions = SecureWriteOptions()


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Results handed to screens
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for sign-in, activation and guest transitions.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    route:
        Where the caller should navigate next.  ``Route.STAY`` on
        failure.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable, translated error description.
    user:
        The installed identity, when one was installed.
    """

    success: bool
    route: Route = Route.STAY
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    user: Optional[UserProfile] = None

    model_config = {"from_attributes": True}


class FlowOutcome(BaseModel):
    """Terminal decision of one run of a session flow.

    ``trail`` records every state visited, in order, which makes the
    decision auditable in logs and tests.
    """

    route: Route
    trail: list[FlowState] = Field(default_factory=list)
    notice: Optional[str] = None
    user: Optional[UserProfile] = None
    is_logged_in: bool = False
    pin_rejected: bool = False


class PinCheckResult(BaseModel):
    """Result of verifying an entered PIN against the stored hash.

    ``migrated`` is ``True`` when a legacy hash matched and the stored
    hash was successfully rewritten to the peppered form.
    """

    status: PinCheckStatus
    legacy_match: bool = False
    migrated: bool = False

    @property
    def accepted(self) -> bool:
        return self.status == PinCheckStatus.ACCEPTED
