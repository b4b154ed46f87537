"""
Shared Enumerations for the Session Engine.

All string enumerations for type-safe routing and state tracking.
StrEnum values compare equal to their string equivalents, so callers
that persist or log them as plain strings keep working.
"""

from __future__ import annotations
from enum import StrEnum


class Route(StrEnum):
    """Entry screens the session engine can route the user to.

    ``STAY`` means "no navigation": the caller keeps showing whatever
    screen it is on (typically with a notice).  ``BOOTSTRAP`` sends the
    user back to the startup screen that re-runs the flow.
    """

    HOME = "home"
    GUEST_HOME = "guest_home"
    SIGN_IN = "sign_in"
    PIN_LOGIN = "pin_login"
    PIN_SETUP = "pin_setup"
    BOOTSTRAP = "bootstrap"
    STAY = "stay"


class FlowState(StrEnum):
    """States visited by the startup/re-entry decision procedure."""

    INIT = "init"
    GUEST_FORCED = "guest_forced"
    CHECKING_BACKEND = "checking_backend"
    BIOMETRIC_ATTEMPT = "biometric_attempt"
    PIN_REQUIRED = "pin_required"
    PASSWORD_REQUIRED = "password_required"
    BACKEND_UNREACHABLE = "backend_unreachable"
    TERMINAL = "terminal"


class PinCheckStatus(StrEnum):
    """Outcome of checking an entered PIN against the stored hash."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NOT_CONFIGURED = "not_configured"


class PinPhase(StrEnum):
    """Which buffer a PIN keypad is currently filling."""

    ENTER = "enter"
    CONFIRM = "confirm"


class PinSetupMode(StrEnum):
    """First-time PIN creation vs. replacing an existing PIN."""

    SETUP = "setup"
    RESET = "reset"


class Accessibility(StrEnum):
    """Keychain accessibility class for secure-tier writes.

    ``AFTER_FIRST_UNLOCK`` keeps items readable after a reboot once the
    device has been unlocked, so background refresh never needs to prompt.
    """

    AFTER_FIRST_UNLOCK = "after_first_unlock"
    WHEN_UNLOCKED = "when_unlocked"
