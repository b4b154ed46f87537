"""
Secure Storage Backends.

Concrete implementations of the secure tier (the keychain-equivalent) used
by ``SecureCredentialStore``.  Backends are synchronous and are allowed to
raise: the store wrapper dispatches them to a worker thread and converts
every failure into "value absent".

Two backends are provided:

- ``KeyringSecureStorage``: the OS credential store (macOS Keychain,
  Windows Credential Manager, Secret Service) through ``keyring``.
- ``EncryptedSqliteStorage``: AES-256-GCM ciphertext in the local
  ``secure_items`` table, for hosts without a usable keyring.

Security model (``EncryptedSqliteStorage``)
-------------------------------------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-machine
  random salt.  The key is **never** persisted to disk.
- Each value is encrypted separately with a fresh nonce; the item key is
  bound as associated data so ciphertext cannot be swapped between keys.
- The key is readable without user presence, which matches the
  after-first-unlock accessibility class that background refresh needs.
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
from pathlib import Path
from typing import Optional, Protocol

import keyring
from keyring.backends import fail
from keyring.errors import PasswordDeleteError

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from Crypto.Random import get_random_bytes

from storefront.database import DatabaseManager
from storefront.logger import StructuredLogger
from storefront.models.auth_models import SecureWriteOptions


class SecureStorageBackend(Protocol):
    """Synchronous key/value secure storage.  Methods may raise."""

    def is_available(self) -> bool: ...  # noqa: E704

    def get_item(self, key: str) -> Optional[str]: ...  # noqa: E704

    def set_item(self, key: str, value: str, options: SecureWriteOptions) -> None: ...  # noqa: E704

    def delete_item(self, key: str) -> None: ...  # noqa: E704


# ---------------------------------------------------------------------------
# OS keychain
# ---------------------------------------------------------------------------

class KeyringSecureStorage:
    """Secure tier backed by the OS credential store.

    ``keyring`` exposes no accessibility classes; the OS default for
    the login keychain already survives reboots after first unlock, so
    *options* are accepted for interface parity and otherwise ignored.

    Parameters
    ----------
    service_name:
        Keyring service under which every item is filed.
    """

    def __init__(self, service_name: str) -> None:
        self._service: str = service_name

    def is_available(self) -> bool:
        """``False`` when keyring resolved to its fail-everything backend.

        This flag alone is not trusted; ``SecureCredentialStore`` probes
        real read/write capability before using the tier.
        """
        return not isinstance(keyring.get_keyring(), fail.Keyring)

    def get_item(self, key: str) -> Optional[str]:
        return keyring.get_password(self._service, key)

    def set_item(self, key: str, value: str, options: SecureWriteOptions) -> None:
        keyring.set_password(self._service, key, value)

    def delete_item(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except PasswordDeleteError:
            # Absent already.
            pass


# ---------------------------------------------------------------------------
# Encrypted SQLite
# ---------------------------------------------------------------------------

class EncryptedSqliteStorage:
    """Secure tier stored as AES-256-GCM ciphertext in SQLite.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` whose schema includes
        ``secure_items``.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    salt_path:
        Location of the per-machine random salt.  Created on first use
        with owner-only permissions.
    iterations:
        PBKDF2 iteration count.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32
    _NONCE_LENGTH: int = 12

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path,
        iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = salt_path
        self._iterations: int = iterations
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # SecureStorageBackend
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return True

    def get_item(self, key: str) -> Optional[str]:
        """Return the decrypted value for *key*, or ``None`` if absent.

        Raises
        ------
        ValueError
            If the ciphertext fails authentication (corrupted row or
            changed machine identity).
        """
        with self._db.write_lock:
            row = self._db.sqlite.execute(
                "SELECT ciphertext, nonce, tag FROM secure_items WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None

        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
        cipher.update(key.encode("utf-8"))
        plaintext: bytes = cipher.decrypt_and_verify(row["ciphertext"], row["tag"])
        return plaintext.decode("utf-8")

    def set_item(self, key: str, value: str, options: SecureWriteOptions) -> None:
        nonce: bytes = get_random_bytes(self._NONCE_LENGTH)
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)
        cipher.update(key.encode("utf-8"))
        ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))

        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                INSERT INTO secure_items (key, ciphertext, nonce, tag, accessibility)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    ciphertext    = excluded.ciphertext,
                    nonce         = excluded.nonce,
                    tag           = excluded.tag,
                    accessibility = excluded.accessibility,
                    updated_at    = CURRENT_TIMESTAMP
                """,
                (key, ciphertext, nonce, tag, str(options.accessibility)),
            )
            self._db.sqlite.commit()

    def delete_item(self, key: str) -> None:
        with self._db.write_lock:
            self._db.sqlite.execute("DELETE FROM secure_items WHERE key = ?", (key,))
            self._db.sqlite.commit()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once per process) the 256-bit AES key.

        Key material is ``hostname:username``; the real entropy comes
        from the per-machine salt.  A copied database is useless on a
        different machine or OS account.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run."""
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine secure storage salt created at %s.", self._salt_path)
        return salt
