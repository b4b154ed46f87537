"""
Application Settings Service (plaintext tier).

Read/write access to the ``app_settings`` key-value table in the local
SQLite database.  This is the plaintext tier of the credential record:
opt-in flags, the guest flag and the PIN hash backup mirror.  Tokens
never land here.

    CREATE TABLE IF NOT EXISTS app_settings (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

from __future__ import annotations

from typing import Optional

from storefront.database import DatabaseManager
from storefront.logger import StructuredLogger

KEY_BIOMETRIC_ENABLED: str = "biometric_enabled"
KEY_LOGGED_IN: str = "logged_in"
KEY_GUEST_MODE: str = "guest_mode"
KEY_PIN_HASH_BACKUP: str = "pin_hash_backup"

_FLAG_ON: str = "1"
_FLAG_OFF: str = "0"


class AppSettingsService:
    """Manages persistent plaintext preferences in local SQLite.

    All methods swallow database errors: a failed read is reported as
    ``None`` and a failed write as ``False``, so callers treat an
    unusable tier exactly like an unconfigured one.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` with active SQLite connection.
    logger:
        Structured logger instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    # ------------------------------------------------------------------
    # Generic key-value access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Read a setting value by key.  Returns ``None`` if not found."""
        try:
            with self._db.write_lock:
                row = self._db.sqlite.execute(
                    "SELECT value FROM app_settings WHERE key = ?",
                    (key,),
                ).fetchone()
            return row["value"] if row is not None else None
        except Exception as exc:
            self._logger.warning("Failed to read app_settings[%s]: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> bool:
        """Upsert a setting value.  Returns ``True`` on success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO app_settings (key, value)
                    VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                self._db.sqlite.commit()
            self._logger.debug("app_settings[%s] updated.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to write app_settings[%s]: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        """Remove a setting.  Deleting a missing key is a success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    "DELETE FROM app_settings WHERE key = ?", (key,),
                )
                self._db.sqlite.commit()
            return True
        except Exception as exc:
            self._logger.error("Failed to delete app_settings[%s]: %s", key, exc)
            return False

    # ------------------------------------------------------------------
    # Typed convenience: flags
    # ------------------------------------------------------------------

    def is_biometric_enabled(self) -> bool:
        """Explicit opt-in only: anything but ``"1"`` means disabled."""
        return self.get(KEY_BIOMETRIC_ENABLED) == _FLAG_ON

    def get_biometric_flag(self) -> str:
        return self.get(KEY_BIOMETRIC_ENABLED) or _FLAG_OFF

    def set_biometric_flag(self, value: str) -> bool:
        return self.set(KEY_BIOMETRIC_ENABLED, value)

    def disable_biometric(self) -> bool:
        return self.delete(KEY_BIOMETRIC_ENABLED)

    def mark_logged_in(self) -> bool:
        return self.set(KEY_LOGGED_IN, _FLAG_ON)

    def clear_logged_in(self) -> bool:
        return self.delete(KEY_LOGGED_IN)

    def is_logged_in_marked(self) -> bool:
        return self.get(KEY_LOGGED_IN) == _FLAG_ON

    def is_guest_mode(self) -> bool:
        return self.get(KEY_GUEST_MODE) == _FLAG_ON

    def set_guest_mode(self, enabled: bool) -> bool:
        if enabled:
            return self.set(KEY_GUEST_MODE, _FLAG_ON)
        return self.delete(KEY_GUEST_MODE)

    # ------------------------------------------------------------------
    # Typed convenience: PIN hash backup mirror
    # ------------------------------------------------------------------

    def get_pin_hash_backup(self) -> Optional[str]:
        return self.get(KEY_PIN_HASH_BACKUP)

    def set_pin_hash_backup(self, pin_hash: str) -> bool:
        return self.set(KEY_PIN_HASH_BACKUP, pin_hash)

    def clear_pin_hash_backup(self) -> bool:
        return self.delete(KEY_PIN_HASH_BACKUP)
