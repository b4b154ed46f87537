"""
Data Models Package.

Re-exports the session engine models for short imports:
    from storefront.models import UserProfile, Route, FlowOutcome
"""

from __future__ import annotations

from storefront.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    FlowOutcome,
    PinCheckResult,
    SecureWriteOptions,
    ValidationResult,
)
from storefront.models.enums import (
    Accessibility,
    FlowState,
    PinCheckStatus,
    PinPhase,
    PinSetupMode,
    Route,
)
from storefront.models.user import GUEST_PROFILE, UserProfile

__all__ = [
    "Accessibility",
    "AuthErrorCode",
    "AuthResult",
    "FlowOutcome",
    "FlowState",
    "GUEST_PROFILE",
    "PinCheckResult",
    "PinCheckStatus",
    "PinPhase",
    "PinSetupMode",
    "Route",
    "SecureWriteOptions",
    "UserProfile",
    "ValidationResult",
]
