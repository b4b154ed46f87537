"""
PIN Entry Controllers.

Screen-side state machines for the 4-digit keypad:

- ``PinPad``: the digit buffer (``0..3`` collected, then complete).
- ``PinLoginController``: auto-submits on the 4th digit through the
  session orchestrator; a rejected PIN clears the buffer.
- ``PinSetupController``: enter, then confirm.  A mismatch clears only
  the confirmation buffer.  Used for first-time setup and for resetting
  an existing PIN.

Controllers return ``FlowOutcome`` objects; the screen renders the
notice and navigates to ``outcome.route`` unless it is ``Route.STAY``.
"""

from __future__ import annotations

from typing import Optional

from storefront.errors import StorageUnavailableError, TokenMissingError
from storefront.logger import StructuredLogger
from storefront.models.auth_models import FlowOutcome
from storefront.models.enums import PinPhase, PinSetupMode, Route
from storefront.services.auth_flow import NO_BACKEND_MESSAGE, SessionOrchestrator
from storefront.services.base_service import BaseService
from storefront.services.credential_store import SecureCredentialStore
from storefront.services.network import ReachabilityGuard
from storefront.services.pin_service import PIN_LENGTH, PinService
from storefront.services.token_service import TokenService

_MISMATCH_MESSAGE: str = "PINs do not match."
_SAVE_FAILED_MESSAGE: str = "Could not save the PIN."
_PIN_SAVED_MESSAGE: str = "PIN saved."
_PIN_SAVED_NO_TOKEN_MESSAGE: str = "PIN saved, but no access token was found."
_WITHOUT_PIN_MESSAGE: str = "Signed in without a PIN. You can set one later."


class PinPad:
    """Fixed-length digit buffer."""

    def __init__(self, length: int = PIN_LENGTH) -> None:
        self._length = length
        self._digits: list[str] = []

    @property
    def value(self) -> str:
        return "".join(self._digits)

    @property
    def filled(self) -> int:
        return len(self._digits)

    @property
    def is_complete(self) -> bool:
        return len(self._digits) == self._length

    def press(self, digit: str) -> bool:
        """Append *digit*.  Returns ``True`` once the buffer is complete.

        Non-digits and presses on a full buffer are ignored.
        """
        if len(digit) == 1 and digit.isdigit() and not self.is_complete:
            self._digits.append(digit)
        return self.is_complete

    def delete(self) -> None:
        if self._digits:
            self._digits.pop()

    def clear(self) -> None:
        self._digits.clear()


class PinLoginController:
    """Keypad behaviour of the PIN login screen."""

    def __init__(self, orchestrator: SessionOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._pad = PinPad()
        self._busy = False

    @property
    def pad(self) -> PinPad:
        return self._pad

    async def open(self) -> FlowOutcome:
        """Run the screen-entry checks (backend up, PIN configured)."""
        return await self._orchestrator.enter_pin_screen()

    async def press(self, digit: str) -> Optional[FlowOutcome]:
        """Collect a digit; the 4th one submits and returns the outcome."""
        if self._busy or not self._pad.press(digit):
            return None

        self._busy = True
        try:
            return await self._orchestrator.submit_pin(self._pad.value)
        finally:
            self._pad.clear()
            self._busy = False

    def delete(self) -> None:
        if not self._busy:
            self._pad.delete()


class PinSetupController(BaseService):
    """Keypad behaviour of the PIN setup and PIN reset screens.

    Parameters
    ----------
    pins:
        PIN service used to persist the confirmed PIN.
    tokens:
        Token service; the current token is re-saved once the PIN is set.
    store:
        Secure tier.  When unusable, the PIN step is skipped entirely.
    guard:
        Reachability guard; entering home requires the backend online.
    mode:
        ``SETUP`` after a password login, ``RESET`` from the profile.
    enable_biometric:
        Whether completing setup also opts into biometric unlock.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        pins: PinService,
        tokens: TokenService,
        store: SecureCredentialStore,
        guard: ReachabilityGuard,
        mode: PinSetupMode,
        enable_biometric: bool,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._pins = pins
        self._tokens = tokens
        self._store = store
        self._guard = guard
        self._mode = mode
        self._enable_biometric = enable_biometric

        self._phase: PinPhase = PinPhase.ENTER
        self._first = PinPad()
        self._confirm = PinPad()
        self._busy = False

    @property
    def phase(self) -> PinPhase:
        return self._phase

    @property
    def active_pad(self) -> PinPad:
        return self._first if self._phase == PinPhase.ENTER else self._confirm

    async def open(self) -> Optional[FlowOutcome]:
        """Skip the screen when secure storage cannot hold a PIN.

        Returns ``None`` when the keypad should be shown.
        """
        if await self._store.probe_usable():
            return None

        self._logger.info("Secure storage unsupported; PIN step skipped.")
        token = await self._tokens.get_token(require_auth=False)
        if not token:
            return FlowOutcome(route=Route.SIGN_IN, notice=TokenMissingError().message)
        await self._tokens.save_tokens(token)
        return await self._home_if_online(StorageUnavailableError().message)

    async def press(self, digit: str) -> Optional[FlowOutcome]:
        if self._busy:
            return None

        if self._phase == PinPhase.ENTER:
            if self._first.press(digit):
                self._phase = PinPhase.CONFIRM
            return None

        if not self._confirm.press(digit):
            return None

        if self._confirm.value != self._first.value:
            self._confirm.clear()
            return FlowOutcome(route=Route.STAY, notice=_MISMATCH_MESSAGE, pin_rejected=True)

        self._busy = True
        try:
            return await self._save()
        finally:
            self._busy = False

    def delete(self) -> None:
        if not self._busy:
            self.active_pad.delete()

    async def continue_without_pin(self) -> FlowOutcome:
        """Enter the app with the current token and no PIN."""
        token = await self._tokens.get_token(require_auth=False)
        if not token:
            return FlowOutcome(route=Route.STAY, notice=TokenMissingError().message)
        await self._tokens.save_tokens(token)
        return await self._home_if_online(_WITHOUT_PIN_MESSAGE)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _save(self) -> FlowOutcome:
        if not await self._pins.save_pin(self._first.value):
            self._restart()
            return FlowOutcome(route=Route.STAY, notice=_SAVE_FAILED_MESSAGE)

        if self._mode == PinSetupMode.RESET:
            self._logger.info("PIN reset.")
            return FlowOutcome(route=Route.HOME)

        notice = _PIN_SAVED_MESSAGE
        token = await self._tokens.get_token(require_auth=False)
        if token:
            await self._tokens.save_tokens(token, biometric_enabled=self._enable_biometric)
        else:
            notice = _PIN_SAVED_NO_TOKEN_MESSAGE
        self._logger.info("PIN configured.")
        return await self._home_if_online(notice)

    async def _home_if_online(self, notice: str) -> FlowOutcome:
        if not await self._guard.is_backend_reachable():
            return FlowOutcome(route=Route.STAY, notice=NO_BACKEND_MESSAGE)
        return FlowOutcome(route=Route.HOME, notice=notice)

    def _restart(self) -> None:
        self._first.clear()
        self._confirm.clear()
        self._phase = PinPhase.ENTER
