"""
PIN Subsystem.

Hashes, verifies and persists the 4-digit local PIN.

Two hash forms are accepted so that PINs created by older builds keep
working:

- legacy: ``sha256(pin)``
- modern: ``sha256(pin + PEPPER)``

A legacy match is rewritten to the modern form in the secure tier and
then in the plaintext backup mirror before the caller proceeds.  A
failed rewrite is logged and does not block the login; the next
successful check retries it.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from storefront.logger import StructuredLogger
from storefront.models.auth_models import PinCheckResult, ValidationResult
from storefront.models.enums import PinCheckStatus
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.base_service import BaseService
from storefront.services.credential_store import KEY_PIN_HASH, SecureCredentialStore

PIN_LENGTH: int = 4


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def validate_pin_format(pin: str) -> ValidationResult:
    """Check that *pin* is exactly four ASCII digits."""
    if len(pin) != PIN_LENGTH or not (pin.isascii() and pin.isdigit()):
        return ValidationResult(
            is_valid=False,
            error_message=f"PIN must be exactly {PIN_LENGTH} digits.",
        )
    return ValidationResult(is_valid=True)


class PinService(BaseService):
    """Stores and verifies the PIN hash across both credential tiers.

    Parameters
    ----------
    store:
        Secure tier (primary ``pin_hash``).
    settings:
        Plaintext tier (``pin_hash_backup`` mirror).
    pepper:
        Application-wide string appended before hashing.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        store: SecureCredentialStore,
        settings: AppSettingsService,
        pepper: str,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._store: SecureCredentialStore = store
        self._settings: AppSettingsService = settings
        self._pepper: str = pepper

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def legacy_hash(pin: str) -> str:
        return _sha256_hex(pin)

    def modern_hash(self, pin: str) -> str:
        return _sha256_hex(pin + self._pepper)

    # ------------------------------------------------------------------
    # Stored hash
    # ------------------------------------------------------------------

    async def load_stored_hash(self) -> Optional[str]:
        """Return the stored hash, restoring the secure copy from backup.

        An OS-level keychain reset can wipe the secure tier while the
        plaintext mirror survives; the mirror is copied back before the
        "is a PIN configured" decision.
        """
        stored = await self._store.get(KEY_PIN_HASH)
        if stored:
            return stored

        backup = self._settings.get_pin_hash_backup()
        if not backup:
            return None

        if await self._store.set(KEY_PIN_HASH, backup):
            self._logger.info("PIN hash restored into secure storage from backup.")
        else:
            self._logger.warning("PIN hash backup found but could not be restored.")
        return backup

    async def is_pin_configured(self) -> bool:
        return await self.load_stored_hash() is not None

    async def save_pin(self, pin: str) -> bool:
        """Persist the modern hash of *pin* to both tiers.

        Returns ``True`` when the secure tier accepted the write.  The
        backup mirror follows only a successful secure write, so a failed
        save leaves nothing behind for ``load_stored_hash`` to restore.
        """
        pin_hash = self.modern_hash(pin)
        if not await self._store.set(KEY_PIN_HASH, pin_hash):
            self._logger.warning("PIN hash could not be saved; backup left unchanged.")
            return False
        self._settings.set_pin_hash_backup(pin_hash)
        return True

    async def clear_pin(self) -> None:
        await self._store.delete(KEY_PIN_HASH)
        self._settings.clear_pin_hash_backup()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def check_pin(self, pin: str) -> PinCheckResult:
        """Verify *pin* and migrate a legacy hash on match.

        A missing hash is ``NOT_CONFIGURED``, never an implicit accept.
        """
        stored = await self.load_stored_hash()
        if not stored:
            return PinCheckResult(status=PinCheckStatus.NOT_CONFIGURED)

        # Both digests are always computed so timing does not reveal the form.
        legacy = self.legacy_hash(pin)
        modern = self.modern_hash(pin)
        legacy_match = hmac.compare_digest(stored.encode("utf-8"), legacy.encode("utf-8"))
        modern_match = hmac.compare_digest(stored.encode("utf-8"), modern.encode("utf-8"))

        if not legacy_match and not modern_match:
            return PinCheckResult(status=PinCheckStatus.REJECTED)

        if legacy_match and not modern_match:
            migrated = await self._migrate(modern)
            return PinCheckResult(
                status=PinCheckStatus.ACCEPTED,
                legacy_match=True,
                migrated=migrated,
            )

        self._sync_backup(stored)
        return PinCheckResult(status=PinCheckStatus.ACCEPTED)

    async def _migrate(self, modern: str) -> bool:
        if not await self._store.set(KEY_PIN_HASH, modern):
            self._logger.warning("Failed to migrate PIN hash to peppered form.")
            return False
        if not self._settings.set_pin_hash_backup(modern):
            self._logger.warning("PIN hash migrated but backup mirror not updated.")
        self._logger.info("PIN hash migrated to peppered form.", extra={"event": "PIN_MIGRATED"})
        return True

    def _sync_backup(self, stored: str) -> None:
        """Retry a backup update that failed during an earlier migration."""
        if self._settings.get_pin_hash_backup() != stored:
            self._settings.set_pin_hash_backup(stored)
