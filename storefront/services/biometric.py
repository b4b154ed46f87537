"""
Biometric Gate.

Fast local unlock.  A successful biometric assertion releases the access
token already held in the cache or the secure tier; it never mints a new
one.  Refreshing is left to the explicit PIN and password paths.
"""

from __future__ import annotations

from typing import Optional, Protocol

from storefront.logger import StructuredLogger
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.base_service import BaseService
from storefront.services.credential_store import SecureCredentialStore
from storefront.services.token_service import TokenService


class BiometricAuthenticator(Protocol):
    """Device biometric capability.

    ``authenticate`` returns ``False`` when the user dismisses the
    prompt; dismissal is a failure, not an error.
    """

    async def has_hardware(self) -> bool: ...  # noqa: E704

    async def is_enrolled(self) -> bool: ...  # noqa: E704

    async def authenticate(self, prompt: str) -> bool: ...  # noqa: E704


class UnsupportedBiometrics:
    """Authenticator for hosts without biometric hardware."""

    async def has_hardware(self) -> bool:
        return False

    async def is_enrolled(self) -> bool:
        return False

    async def authenticate(self, prompt: str) -> bool:
        return False


class BiometricGate(BaseService):
    """Restores a session behind a live biometric prompt.

    Parameters
    ----------
    tokens:
        Token service; only its non-refreshing reads are used.
    store:
        Secure tier, checked for usability before prompting.
    settings:
        Plaintext tier holding the explicit opt-in flag.
    authenticator:
        Device biometric adapter.
    prompt:
        Text shown in the system prompt.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        tokens: TokenService,
        store: SecureCredentialStore,
        settings: AppSettingsService,
        authenticator: BiometricAuthenticator,
        prompt: str,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._tokens: TokenService = tokens
        self._store: SecureCredentialStore = store
        self._settings: AppSettingsService = settings
        self._authenticator: BiometricAuthenticator = authenticator
        self._prompt: str = prompt

    async def restore_biometric_session(self) -> Optional[str]:
        """Return the existing access token after a successful prompt.

        Preconditions are checked in order and the first failure returns
        ``None`` without prompting: explicit opt-in, usable secure
        storage, hardware present, at least one enrolled credential.
        Any adapter failure is also ``None``.
        """
        try:
            await self._tokens.hydrate_once()

            if not self._settings.is_biometric_enabled():
                return None
            if not await self._store.probe_usable():
                return None
            if not await self._authenticator.has_hardware():
                return None
            if not await self._authenticator.is_enrolled():
                return None

            if not await self._authenticator.authenticate(self._prompt):
                self._logger.info("Biometric prompt dismissed or failed.")
                return None

            # No refresh here: a missing token sends the caller to PIN/password.
            token = await self._tokens.get_token(require_auth=False)
        except Exception as exc:
            self._logger.warning("Biometric restore failed: %s", exc)
            return None

        if not token:
            self._logger.info("Biometric accepted but no stored session to release.")
            return None
        return token
