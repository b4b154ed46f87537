"""
Session Identity State.

Provides the injectable ``GuestModeGate`` and ``SessionManager`` that hold
the current identity for the lifetime of the process.

Usage::

    from storefront.auth import GuestModeGate, SessionManager

    gate = GuestModeGate()
    session = SessionManager(gate)
    session.set_user(profile)
    session.set_logged_in(True)
    snapshot = session.get_current_snapshot()
"""

from __future__ import annotations

import threading
from typing import Optional

from pydantic import BaseModel

from storefront.models.user import GUEST_PROFILE, UserProfile


class SessionSnapshot(BaseModel):
    """Immutable view of the identity at one instant."""

    user: Optional[UserProfile] = None
    is_logged_in: bool = False
    is_guest: bool = False

    model_config = {"frozen": True}


class GuestModeGate:
    """Process-wide override forcing every identity setter to the guest
    placeholder.

    Not persisted itself; the companion ``guest_mode`` flag in the
    plaintext tier is what survives restarts.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._guest: bool = False

    def set_guest_session(self, value: bool) -> None:
        with self._lock:
            self._guest = value

    def is_guest_session(self) -> bool:
        with self._lock:
            return self._guest


class SessionManager:
    """Injectable holder for the current identity.

    While the injected ``GuestModeGate`` is on, ``set_user`` installs
    ``GUEST_PROFILE`` whatever it is given and ``set_logged_in`` always
    stores ``False``.  Pass a single instance through the composition
    root so every component shares the same session.
    """

    def __init__(self, gate: GuestModeGate) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._gate: GuestModeGate = gate
        self._current_user: Optional[UserProfile] = None
        self._is_logged_in: bool = False

    @property
    def gate(self) -> GuestModeGate:
        return self._gate

    def set_user(self, user: Optional[UserProfile]) -> None:
        """Install *user* as the session identity (guest-coerced)."""
        with self._lock:
            if self._gate.is_guest_session():
                self._current_user = GUEST_PROFILE
                return
            self._current_user = user

    def set_logged_in(self, logged_in: bool) -> None:
        with self._lock:
            if self._gate.is_guest_session():
                self._is_logged_in = False
                return
            self._is_logged_in = logged_in

    def enter_guest_identity(self) -> None:
        """Turn the gate on and install the placeholder identity."""
        with self._lock:
            self._gate.set_guest_session(True)
            self._current_user = GUEST_PROFILE
            self._is_logged_in = False

    def get_current_user(self) -> Optional[UserProfile]:
        with self._lock:
            return self._current_user

    @property
    def is_logged_in(self) -> bool:
        with self._lock:
            return self._is_logged_in

    def get_current_snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                user=self._current_user,
                is_logged_in=self._is_logged_in,
                is_guest=self._gate.is_guest_session(),
            )

    def clear(self) -> None:
        """Remove the current identity, ending the session."""
        with self._lock:
            self._current_user = None
            self._is_logged_in = False
