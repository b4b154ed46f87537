"""
Token Service.

Sole owner of the in-memory access-token cache, the refresh
coordination state and the shared HTTP client's ``Authorization``
header.  No other component mutates any of the three.

Refresh is single-flight: concurrent ``refresh_access_token`` callers
await one shared task and all receive its result.  A monotonic session
generation, advanced by ``remove_token``, makes a refresh that resolves
after a sign-out discard its result instead of repopulating storage.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
from pydantic import ValidationError

from storefront.logger import StructuredLogger
from storefront.models.auth_models import RefreshResponse
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.base_service import BaseService
from storefront.services.credential_store import (
    KEY_ACCESS_TOKEN,
    KEY_REFRESH_TOKEN,
    SecureCredentialStore,
)

REFRESH_PATH: str = "/auth/refresh"


class TokenService(BaseService):
    """Access/refresh token lifecycle.

    Parameters
    ----------
    store:
        Secure tier holding ``access_token`` and ``refresh_token``.
    settings:
        Plaintext tier holding the ``biometric_enabled`` and
        ``logged_in`` flags.
    http:
        The shared ``httpx.AsyncClient`` whose default headers carry
        the bearer token.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        store: SecureCredentialStore,
        settings: AppSettingsService,
        http: httpx.AsyncClient,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._store: SecureCredentialStore = store
        self._settings: AppSettingsService = settings
        self._http: httpx.AsyncClient = http

        self._cached_token: Optional[str] = None
        self._generation: int = 0
        self._refresh_task: Optional[asyncio.Task[Optional[str]]] = None
        self._hydrated: bool = False
        self._hydrate_lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Cache and header
    # ------------------------------------------------------------------

    @property
    def cached_token(self) -> Optional[str]:
        """Last known access token, without any I/O."""
        return self._cached_token

    @property
    def generation(self) -> int:
        return self._generation

    def _set_cached_token(self, token: Optional[str]) -> None:
        self._cached_token = token
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"
        else:
            self._http.headers.pop("Authorization", None)

    def drop_authorization_header(self) -> None:
        """Stop sending the bearer token without touching storage."""
        self._http.headers.pop("Authorization", None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def hydrate_once(self) -> None:
        """Load the persisted access token into the cache, once per process."""
        if self._hydrated:
            return
        async with self._hydrate_lock:
            if self._hydrated:
                return
            if self._cached_token is None:
                token = await self._store.get(KEY_ACCESS_TOKEN)
                if token:
                    self._set_cached_token(token)
            self._hydrated = True

    async def get_token(self, require_auth: bool = True) -> Optional[str]:
        """Return the cached token, else the stored one.  Never refreshes.

        *require_auth* is accepted for call-site symmetry only: guest
        mode affects routing, not token restore.
        """
        if self._cached_token:
            return self._cached_token
        token = await self._store.get(KEY_ACCESS_TOKEN)
        if token:
            self._set_cached_token(token)
        return token or None

    async def get_refresh_token(self) -> Optional[str]:
        return await self._store.get(KEY_REFRESH_TOKEN)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        biometric_enabled: bool = False,
    ) -> None:
        """Install *access_token* and persist the pair.

        The cache and header are updated before any I/O, so a storage
        failure still leaves an in-memory session.  An existing
        biometric opt-in is kept unless *biometric_enabled* turns it on.
        A sign-out that lands while the writes are in flight wins.
        """
        await self._persist(self._generation, access_token, refresh_token, biometric_enabled)

    async def _persist(
        self,
        generation: int,
        access_token: str,
        refresh_token: Optional[str],
        biometric_enabled: bool,
    ) -> bool:
        """Write the pair on behalf of session *generation*.

        Returns ``False`` without touching the cache or the logged-in
        marker when that session has already ended.  The generation is
        checked again after every storage write; if ``remove_token`` ran
        meanwhile, whatever this call wrote is deleted again.
        """
        if generation != self._generation:
            return False
        self._set_cached_token(access_token)

        written: list[tuple[str, str]] = []
        pairs = [(KEY_ACCESS_TOKEN, access_token)]
        if refresh_token:
            pairs.append((KEY_REFRESH_TOKEN, refresh_token))
        for key, value in pairs:
            if await self._store.set(key, value):
                written.append((key, value))
            elif key == KEY_ACCESS_TOKEN:
                self._logger.warning("Access token kept in memory only.")
            else:
                self._logger.warning("Refresh token could not be persisted.")
            if generation != self._generation:
                for stale_key, stale_value in written:
                    # A newer sign-in may already own the slot.
                    if await self._store.get(stale_key) == stale_value:
                        await self._store.delete(stale_key)
                self._logger.info("Session ended while saving tokens; writes reverted.")
                return False

        previous: str = self._settings.get_biometric_flag()
        self._settings.set_biometric_flag("1" if biometric_enabled else previous)
        self._settings.mark_logged_in()
        return True

    async def remove_token(self) -> None:
        """Clear both tokens and the logged-in marker.

        The PIN hash and the biometric opt-in belong to a separate layer
        of trust and are left alone.
        """
        self._generation += 1
        self._set_cached_token(None)
        await self._store.delete(KEY_ACCESS_TOKEN)
        await self._store.delete(KEY_REFRESH_TOKEN)
        self._settings.clear_logged_in()

    def disable_biometric(self) -> None:
        """Turn the biometric opt-in off.  Tokens are untouched."""
        self._settings.disable_biometric()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> Optional[str]:
        """Exchange the refresh token for a new access token.

        Returns the new access token, or ``None`` on any failure.  A
        failure leaves the stored tokens untouched.  Only one exchange
        runs at a time; concurrent callers share its result.
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._refresh_once(self._generation))
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        # Shielded so one cancelled waiter cannot abort the shared exchange.
        return await asyncio.shield(task)

    def _clear_refresh_task(self, task: asyncio.Task[Optional[str]]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh_once(self, generation: int) -> Optional[str]:
        try:
            refresh_token = await self.get_refresh_token()
            if not refresh_token:
                self._logger.info("No refresh token stored; refresh skipped.")
                return None

            response = await self._http.post(
                REFRESH_PATH,
                json={"refresh_token": refresh_token},
                auth=None,
            )
            if response.is_error:
                self._logger.warning("Token refresh rejected with HTTP %d.", response.status_code)
                return None

            payload = RefreshResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            self._logger.warning("Token refresh failed: %s", exc)
            return None

        # The server may keep the refresh token; then the old one stays valid.
        persisted = await self._persist(
            generation,
            payload.access_token,
            payload.refresh_token or refresh_token,
            biometric_enabled=False,
        )
        if not persisted:
            self._logger.info("Session ended during refresh; result discarded.")
            return None
        self._logger.info("Access token refreshed.", extra={"event": "TOKEN_REFRESHED"})
        return payload.access_token
