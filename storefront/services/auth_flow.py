"""
Session Orchestrator.

The startup / re-entry decision procedure.  One ``run()`` per app start
or foreground picks exactly one entry screen:

1. persisted guest flag          -> guest home (no credential checks)
2. backend unreachable           -> stay put, notice (cooldown-limited)
3. biometric restore succeeded   -> profile, home
4. PIN hash and access token     -> backend re-check, PIN screen
5. otherwise                     -> password sign-in

The PIN screen has its own strict policy (``submit_pin``): a correct PIN
proves possession of the device, not a valid server session, so the
backend must be reachable and a token must be resolvable (cached, or one
refresh) before the user gets in.

Every unexpected exception ends the run on the password screen, never on
a half-authenticated state.
"""

from __future__ import annotations

from typing import Optional

from storefront.auth import SessionManager
from storefront.errors import PinMismatchError
from storefront.logger import StructuredLogger
from storefront.models.auth_models import FlowOutcome
from storefront.models.enums import FlowState, PinCheckStatus, Route
from storefront.models.user import UserProfile
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.auth_service import AuthService
from storefront.services.base_service import BaseService
from storefront.services.biometric import BiometricGate
from storefront.services.network import ReachabilityGuard
from storefront.services.notifier import CooldownNotifier
from storefront.services.pin_service import PinService
from storefront.services.token_service import TokenService

NO_BACKEND_TITLE: str = "No connection"
NO_BACKEND_MESSAGE: str = "No connection to the server. Try again later."


class SessionOrchestrator(BaseService):
    """Startup flow state machine.

    Parameters
    ----------
    tokens, pins, biometric, guard, auth:
        Collaborating services.
    settings:
        Plaintext tier (reads the ``guest_mode`` flag).
    session:
        Shared identity holder.
    notifier:
        Cooldown-limited notifier for the backend-down notice.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    recheck_after_biometric:
        Re-probe the backend between a biometric unlock and the profile
        fetch.
    """

    def __init__(
        self,
        tokens: TokenService,
        pins: PinService,
        biometric: BiometricGate,
        guard: ReachabilityGuard,
        auth: AuthService,
        settings: AppSettingsService,
        session: SessionManager,
        notifier: CooldownNotifier,
        logger: StructuredLogger,
        recheck_after_biometric: bool = True,
    ) -> None:
        super().__init__(logger)
        self._tokens = tokens
        self._pins = pins
        self._biometric = biometric
        self._guard = guard
        self._auth = auth
        self._settings = settings
        self._session = session
        self._notifier = notifier
        self._recheck_after_biometric = recheck_after_biometric

    # ------------------------------------------------------------------
    # Startup flow
    # ------------------------------------------------------------------

    async def run(self) -> FlowOutcome:
        trail: list[FlowState] = [FlowState.INIT]
        try:
            outcome = await self._decide(trail)
        except Exception as exc:
            self._logger.error("Startup flow failed: %s", exc, exc_info=True)
            trail.append(FlowState.PASSWORD_REQUIRED)
            outcome = self._terminal(trail, Route.SIGN_IN)

        self._logger.info(
            "Startup flow routed to %s.",
            outcome.route,
            extra={"trail": ",".join(outcome.trail)},
        )
        return outcome

    async def _decide(self, trail: list[FlowState]) -> FlowOutcome:
        # Guest mode outranks any leftover tokens.
        if self._settings.is_guest_mode():
            trail.append(FlowState.GUEST_FORCED)
            self._session.enter_guest_identity()
            await self._tokens.remove_token()
            return self._terminal(trail, Route.GUEST_HOME, user=self._session.get_current_user())

        await self._tokens.hydrate_once()

        trail.append(FlowState.CHECKING_BACKEND)
        if not await self._guard.is_backend_reachable():
            return self._backend_unreachable(trail)

        trail.append(FlowState.BIOMETRIC_ATTEMPT)
        if await self._biometric.restore_biometric_session():
            if self._recheck_after_biometric and not await self._guard.is_backend_reachable():
                return self._backend_unreachable(trail)
            profile = await self._auth.get_current_user()
            self._install_identity(profile)
            return self._terminal(trail, Route.HOME, user=profile, is_logged_in=True)

        pin_hash = await self._pins.load_stored_hash()
        token = await self._tokens.get_token(require_auth=False)
        if pin_hash and token:
            trail.append(FlowState.PIN_REQUIRED)
            if not await self._guard.is_backend_reachable():
                return self._backend_unreachable(trail)
            return self._terminal(trail, Route.PIN_LOGIN)

        trail.append(FlowState.PASSWORD_REQUIRED)
        return self._terminal(trail, Route.SIGN_IN)

    # ------------------------------------------------------------------
    # PIN screen
    # ------------------------------------------------------------------

    async def enter_pin_screen(self) -> FlowOutcome:
        """Checks run when the PIN screen opens.

        Backend down sends the user back to the bootstrap screen; no PIN
        configured (even after backup restore) sends them to password
        sign-in.  Otherwise the screen stays.
        """
        trail: list[FlowState] = [FlowState.PIN_REQUIRED, FlowState.CHECKING_BACKEND]
        try:
            if not await self._guard.is_backend_reachable():
                trail.append(FlowState.BACKEND_UNREACHABLE)
                return self._terminal(trail, Route.BOOTSTRAP, notice=NO_BACKEND_MESSAGE)
            if not await self._pins.is_pin_configured():
                trail.append(FlowState.PASSWORD_REQUIRED)
                return self._terminal(trail, Route.SIGN_IN)
        except Exception as exc:
            self._logger.error("PIN screen entry check failed: %s", exc)
            trail.append(FlowState.PASSWORD_REQUIRED)
            return self._terminal(trail, Route.SIGN_IN)
        return self._terminal(trail, Route.STAY)

    async def submit_pin(self, pin: str) -> FlowOutcome:
        """Verify *pin* and, if correct, resume the server session."""
        trail: list[FlowState] = [FlowState.PIN_REQUIRED]
        try:
            return await self._submit_pin(pin, trail)
        except Exception as exc:
            self._logger.error("PIN login failed: %s", exc, exc_info=True)
            trail.append(FlowState.PASSWORD_REQUIRED)
            return self._terminal(trail, Route.SIGN_IN)

    async def _submit_pin(self, pin: str, trail: list[FlowState]) -> FlowOutcome:
        check = await self._pins.check_pin(pin)

        if check.status == PinCheckStatus.NOT_CONFIGURED:
            trail.append(FlowState.PASSWORD_REQUIRED)
            return self._terminal(trail, Route.SIGN_IN)
        if check.status == PinCheckStatus.REJECTED:
            trail.append(FlowState.TERMINAL)
            return FlowOutcome(
                route=Route.STAY,
                trail=list(trail),
                notice=PinMismatchError().message,
                pin_rejected=True,
            )

        # Strict sync: the local secret alone never resumes a session.
        trail.append(FlowState.CHECKING_BACKEND)
        if not await self._guard.is_backend_reachable():
            trail.append(FlowState.BACKEND_UNREACHABLE)
            return self._terminal(trail, Route.STAY, notice=NO_BACKEND_MESSAGE)

        token = await self._tokens.get_token(require_auth=False)
        if not token:
            token = await self._tokens.refresh_access_token()
        if not token:
            self._logger.info("PIN accepted but the server session is gone.")
            trail.append(FlowState.PASSWORD_REQUIRED)
            return self._terminal(trail, Route.SIGN_IN)

        await self._tokens.save_tokens(token)
        profile = await self._auth.get_current_user()
        self._install_identity(profile)
        self._logger.info("Session resumed with PIN.", extra={"event": "LOGIN", "method": "pin"})
        return self._terminal(trail, Route.HOME, user=profile, is_logged_in=True)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _install_identity(self, profile: UserProfile) -> None:
        self._session.set_user(profile)
        self._session.set_logged_in(True)

    def _backend_unreachable(self, trail: list[FlowState]) -> FlowOutcome:
        trail.append(FlowState.BACKEND_UNREACHABLE)
        shown = self._notifier.notify_once(NO_BACKEND_TITLE, NO_BACKEND_MESSAGE)
        return self._terminal(trail, Route.STAY, notice=NO_BACKEND_MESSAGE if shown else None)

    @staticmethod
    def _terminal(
        trail: list[FlowState],
        route: Route,
        notice: Optional[str] = None,
        user: Optional[UserProfile] = None,
        is_logged_in: bool = False,
    ) -> FlowOutcome:
        trail.append(FlowState.TERMINAL)
        return FlowOutcome(
            route=route,
            trail=list(trail),
            notice=notice,
            user=user,
            is_logged_in=is_logged_in,
        )
