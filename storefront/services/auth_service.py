"""
Authentication Service.

Account-level operations that sit between the screens and the token,
PIN and session layers: password sign-in, corporate account activation,
profile fetches, sign-out, account deletion and the guest-mode switch.

Screen-facing methods return typed ``AuthResult`` models; the UI never
inspects raw exceptions.  ``get_me`` / ``get_current_user`` are the
exception: they are called from other services and raise
``SessionError`` subclasses.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Optional

import httpx
from pydantic import ValidationError

from storefront.auth import SessionManager, SessionSnapshot
from storefront.errors import (
    AuthInvalidError,
    BackendResponseError,
    NetworkUnavailableError,
    SessionError,
    TokenMissingError,
)
from storefront.logger import StructuredLogger
from storefront.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    LoginResponse,
    ValidationResult,
)
from storefront.models.enums import Route
from storefront.models.user import UserProfile
from storefront.services.api_client import ApiClient, raise_for_backend_status
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.base_service import BaseService
from storefront.services.network import ReachabilityGuard
from storefront.services.pin_service import PinService
from storefront.services.token_service import TokenService
from storefront.utils.error_handler import classify_message, friendly_error_message
from storefront.utils.general import is_valid_email, strip_html_tags


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LOGIN_PATH: str = "/auth/login"
ACTIVATE_PATH: str = "/auth/activate"
ME_PATH: str = "/auth/me"

_MIN_PASSWORD_LENGTH: int = 6

_PROFILE_LOAD_FAILED: str = "Could not load the user profile."
_DELETE_FAILED: str = "Could not delete the account. Try again later."
_OFFLINE_MESSAGE: str = "No internet connection."


class AuthService(BaseService):
    """Account operations for the storefront session.

    Parameters
    ----------
    api:
        Policy-wrapped backend client.
    tokens:
        Token service (cache, storage, refresh).
    pins:
        PIN service, consulted after login and cleared on sign-out.
    settings:
        Plaintext tier (``guest_mode``, ``logged_in``).
    session:
        Shared identity holder.
    guard:
        Reachability guard for the guest-mode transitions.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    profile_cooldown_s:
        Minimum interval between two ``refresh_profile`` fetches.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        api: ApiClient,
        tokens: TokenService,
        pins: PinService,
        settings: AppSettingsService,
        session: SessionManager,
        guard: ReachabilityGuard,
        logger: StructuredLogger,
        profile_cooldown_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(logger)
        self._api: ApiClient = api
        self._tokens: TokenService = tokens
        self._pins: PinService = pins
        self._settings: AppSettingsService = settings
        self._session: SessionManager = session
        self._guard: ReachabilityGuard = guard
        self._profile_cooldown_s: float = profile_cooldown_s
        self._clock: Callable[[], float] = clock

        self._profile_refreshing: bool = False
        self._last_profile_refresh: Optional[float] = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_credentials(email: str, password: str) -> ValidationResult:
        """Client-side checks run before any request is sent."""
        if not email or not password:
            return ValidationResult(is_valid=False, error_message="Please fill in all fields.")
        if not is_valid_email(email):
            return ValidationResult(is_valid=False, error_message="Check the e-mail format.")
        if len(password) < _MIN_PASSWORD_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_message=f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.",
            )
        return ValidationResult(is_valid=True)

    # ------------------------------------------------------------------
    # Password login / activation
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Log in with e-mail and password, then finalise the session."""
        return await self._credential_login(
            path=LOGIN_PATH,
            form_field="username",
            email=email,
            password=password,
            failure_label="login failed",
        )

    async def activate(self, email: str, password: str) -> AuthResult:
        """Activate a preloaded corporate account with its contract password."""
        return await self._credential_login(
            path=ACTIVATE_PATH,
            form_field="email",
            email=email,
            password=password,
            failure_label="activate failed",
        )

    async def _credential_login(
        self,
        path: str,
        form_field: str,
        email: str,
        password: str,
        failure_label: str,
    ) -> AuthResult:
        validation = self.validate_credentials(email, password)
        if not validation.is_valid:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message=validation.error_message,
            )

        form = {
            form_field: strip_html_tags(email),
            "password": strip_html_tags(password),
        }
        try:
            response = await self._api.post(path, data=form, auth=None)
            if not response.is_success:
                raise BackendResponseError(
                    f"{failure_label}: {response.status_code} {response.text}",
                    status_code=response.status_code,
                )
            payload = LoginResponse.model_validate(response.json())
        except (SessionError, httpx.HTTPError, ValueError, ValidationError) as exc:
            self._logger.warning("%s: %s", failure_label.capitalize(), exc)
            return self._failure(exc)

        await self._tokens.save_tokens(payload.access_token, payload.refresh_token)
        self._logger.info(
            "Credentials accepted.", extra={"event": "LOGIN", "endpoint": path},
        )
        return await self.finalize_login()

    async def finalize_login(self) -> AuthResult:
        """Leave guest mode, install the profile and pick the next screen.

        Users without a PIN are sent to PIN setup; everyone else goes home.
        """
        self._settings.set_guest_mode(False)
        self._session.gate.set_guest_session(False)
        try:
            profile = await self.get_current_user()
        except (SessionError, httpx.HTTPError) as exc:
            self._logger.error("Profile fetch after login failed: %s", exc)
            return self._failure(exc, user_message=_PROFILE_LOAD_FAILED)

        self._session.set_user(profile)
        self._session.set_logged_in(True)
        self._settings.mark_logged_in()

        route = Route.HOME if await self._pins.is_pin_configured() else Route.PIN_SETUP
        return AuthResult(success=True, route=route, user=profile)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_me(self, bust_cache: bool = True) -> UserProfile:
        """Fetch the signed-in profile from the backend.

        Uses the cached/stored token, or exactly one refresh when none
        is held.

        Raises
        ------
        TokenMissingError
            No token could be obtained.
        AuthInvalidError
            The backend rejected the token even after the 401 retry.
        NetworkUnavailableError
            Offline, unreachable or timed out.
        BackendResponseError
            Any other non-2xx status or an unparseable body.
        """
        token = await self._tokens.get_token()
        if not token:
            token = await self._tokens.refresh_access_token()
        if not token:
            raise TokenMissingError()

        params: dict[str, str] = {}
        if bust_cache:
            params["_"] = str(int(time.time() * 1000))

        response = await self._api.get(
            ME_PATH,
            params=params,
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        )
        raise_for_backend_status(response)
        try:
            return UserProfile.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise BackendResponseError(
                f"Malformed profile response: {exc}", status_code=response.status_code,
            ) from exc

    async def get_current_user(self) -> UserProfile:
        """``get_me`` without cache busting."""
        return await self.get_me(bust_cache=False)

    async def refresh_profile(self) -> AuthResult:
        """Re-fetch the profile for an already signed-in user.

        Skipped (successfully, returning the current identity) in guest
        mode, when logged out, while a fetch is running and within the
        cooldown window.  A missing token ends the session and routes to
        the guest home.
        """
        snapshot = self._session.get_current_snapshot()
        if snapshot.is_guest or not snapshot.is_logged_in:
            return AuthResult(success=True, user=snapshot.user)
        if self._profile_refreshing:
            return AuthResult(success=True, user=snapshot.user)

        now = self._clock()
        if (
            self._last_profile_refresh is not None
            and now - self._last_profile_refresh < self._profile_cooldown_s
        ):
            return AuthResult(success=True, user=snapshot.user)
        self._last_profile_refresh = now

        self._profile_refreshing = True
        try:
            fresh = await self.get_me()
        except TokenMissingError as exc:
            self._logger.warning("Profile refresh found no token; signing out.")
            await self.sign_out()
            return AuthResult(
                success=False,
                route=Route.GUEST_HOME,
                error_code=exc.code,
                error_message=exc.message,
            )
        except (SessionError, httpx.HTTPError) as exc:
            self._logger.warning("Failed to refresh user profile: %s", exc)
            result = self._failure(exc)
            return result.model_copy(update={"user": snapshot.user})
        finally:
            self._profile_refreshing = False

        self._session.set_user(fresh)
        return AuthResult(success=True, user=fresh)

    # ------------------------------------------------------------------
    # Sign-out / deletion
    # ------------------------------------------------------------------

    async def sign_out(self) -> None:
        """Clear every credential: tokens, logged-in flag, PIN and opt-in."""
        await self._tokens.remove_token()
        self._tokens.disable_biometric()
        await self._pins.clear_pin()
        self._tokens.drop_authorization_header()
        self._session.clear()
        self._logger.info("Signed out.", extra={"event": "LOGOUT"})

    async def delete_account(self) -> AuthResult:
        """Delete the account server-side, then sign out locally."""
        try:
            response = await self._api.delete(ME_PATH)
            raise_for_backend_status(response)
        except (SessionError, httpx.HTTPError) as exc:
            self._logger.error("Account deletion failed: %s", exc)
            return self._failure(exc, user_message=_DELETE_FAILED)

        await self.sign_out()
        self._logger.info("Account deleted.", extra={"event": "ACCOUNT_DELETED"})
        return AuthResult(success=True, route=Route.BOOTSTRAP)

    # ------------------------------------------------------------------
    # Guest mode
    # ------------------------------------------------------------------

    async def continue_as_guest(self) -> AuthResult:
        """Persist the guest flag and install the placeholder identity.

        The switch happens before the connectivity check; offline guests
        stay on the current screen with a notice.
        """
        self._settings.set_guest_mode(True)
        self._session.enter_guest_identity()
        self._tokens.drop_authorization_header()
        self._logger.info("Guest mode entered.", extra={"event": "GUEST_MODE"})

        try:
            await self._guard.check_internet_or_raise()
        except NetworkUnavailableError as exc:
            return self._failure(exc, user_message=_OFFLINE_MESSAGE)

        return AuthResult(success=True, route=Route.GUEST_HOME, user=self._session.get_current_user())

    async def leave_guest_mode(self) -> AuthResult:
        """Clear the guest flag and send the user back through the startup flow."""
        self._settings.set_guest_mode(False)
        self._session.gate.set_guest_session(False)
        self._session.clear()
        self._logger.info("Guest mode left.", extra={"event": "GUEST_MODE"})

        try:
            await self._guard.check_internet_or_raise()
        except NetworkUnavailableError as exc:
            return self._failure(exc, user_message=_OFFLINE_MESSAGE)

        return AuthResult(success=True, route=Route.BOOTSTRAP)

    def initialize_session(self) -> SessionSnapshot:
        """Resume guest browsing when the persisted flag is set."""
        if self._settings.is_guest_mode():
            self._session.enter_guest_identity()
        return self._session.get_current_snapshot()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _failure(
        exc: BaseException,
        user_message: Optional[str] = None,
    ) -> AuthResult:
        """Build a failed ``AuthResult`` with a translated message."""
        if isinstance(exc, json.JSONDecodeError):
            exc = BackendResponseError("Malformed response from the server.")
        code: Optional[AuthErrorCode]
        if isinstance(exc, (NetworkUnavailableError, AuthInvalidError)):
            code = exc.code
        else:
            code, _ = classify_message(str(exc))
        if code is None:
            code = exc.code if isinstance(exc, SessionError) else AuthErrorCode.UNKNOWN_ERROR
        return AuthResult(
            success=False,
            error_code=code,
            error_message=friendly_error_message(exc, user_message),
        )
