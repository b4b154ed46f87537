"""
Secure Credential Store.

Async facade over a ``SecureStorageBackend``.  Every operation is safe to
fire and forget: failures are logged and reported as "value absent"
(``None`` / ``False``) so no caller ever crashes on a storage fault.

Usable-ness is established once per process by a real write/read/delete
round-trip on a marker key; the backend's own availability flag is only
a hint.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from storefront.logger import StructuredLogger
from storefront.models.auth_models import DEFAULT_WRITE_OPTIONS, SecureWriteOptions
from storefront.services.base_service import BaseService
from storefront.services.secure_storage import SecureStorageBackend

KEY_ACCESS_TOKEN: str = "access_token"
KEY_REFRESH_TOKEN: str = "refresh_token"
KEY_PIN_HASH: str = "pin_hash"

_PROBE_KEY: str = "__securestore_probe__"
_PROBE_VALUE: str = "ok"


class SecureCredentialStore(BaseService):
    """Secure tier of the credential record.

    Parameters
    ----------
    backend:
        Synchronous backend; every call is dispatched to a worker thread.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(self, backend: SecureStorageBackend, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._backend: SecureStorageBackend = backend
        self._usable: Optional[bool] = None
        self._probe_lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    async def probe_usable(self) -> bool:
        """Return whether the secure tier really reads and writes.

        The first call performs the round-trip; the answer is sticky for
        the rest of the process.  Concurrent first callers share one probe.
        """
        if self._usable is not None:
            return self._usable

        async with self._probe_lock:
            if self._usable is None:
                self._usable = await self._run_probe()
                if not self._usable:
                    self._logger.warning(
                        "Secure storage is not usable on this device; "
                        "session will not be persisted.",
                    )
        return self._usable

    async def _run_probe(self) -> bool:
        try:
            available: bool = await self._backend_reports_available()
            await asyncio.to_thread(
                self._backend.set_item, _PROBE_KEY, _PROBE_VALUE, DEFAULT_WRITE_OPTIONS,
            )
            readback: Optional[str] = await asyncio.to_thread(
                self._backend.get_item, _PROBE_KEY,
            )
            await asyncio.to_thread(self._backend.delete_item, _PROBE_KEY)
        except Exception as exc:
            self._logger.warning("Secure storage probe failed: %s", exc)
            return False
        # Some platforms misreport availability in either direction.
        return readback is not None or available

    async def _backend_reports_available(self) -> bool:
        try:
            return await asyncio.to_thread(self._backend.is_available)
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Key/value access
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        """Read *key*.  Any failure, including an unusable tier, is ``None``."""
        if not await self.probe_usable():
            return None
        try:
            return await asyncio.to_thread(self._backend.get_item, key)
        except Exception as exc:
            self._logger.warning("Secure read of '%s' failed: %s", key, exc)
            return None

    async def set(
        self,
        key: str,
        value: str,
        options: SecureWriteOptions = DEFAULT_WRITE_OPTIONS,
    ) -> bool:
        """Write *key*.  Returns ``True`` only when the backend accepted it."""
        if not await self.probe_usable():
            return False
        try:
            await asyncio.to_thread(self._backend.set_item, key, value, options)
            return True
        except Exception as exc:
            self._logger.warning("Secure write of '%s' failed: %s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        if not await self.probe_usable():
            return False
        try:
            await asyncio.to_thread(self._backend.delete_item, key)
            return True
        except Exception as exc:
            self._logger.warning("Secure delete of '%s' failed: %s", key, exc)
            return False
