"""Tests for the encrypted SQLite and keyring secure-tier backends."""

from __future__ import annotations

import platform
import stat
from typing import Optional

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import PasswordDeleteError

from storefront.models.auth_models import DEFAULT_WRITE_OPTIONS, SecureWriteOptions
from storefront.models.enums import Accessibility
from storefront.services.secure_storage import EncryptedSqliteStorage, KeyringSecureStorage


@pytest.fixture
def encrypted(db, logger, tmp_path) -> EncryptedSqliteStorage:
    return EncryptedSqliteStorage(
        db=db,
        logger=logger,
        salt_path=tmp_path / "salt.bin",
        iterations=1_000,
    )


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found") from None


@pytest.fixture
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


# ---------------------------------------------------------------------------
# EncryptedSqliteStorage
# ---------------------------------------------------------------------------

def test_encrypted_round_trip(encrypted, db):
    encrypted.set_item("access_token", "tok-123", DEFAULT_WRITE_OPTIONS)

    assert encrypted.get_item("access_token") == "tok-123"
    row = db.sqlite.execute(
        "SELECT ciphertext, accessibility FROM secure_items WHERE key = ?", ("access_token",),
    ).fetchone()
    assert b"tok-123" not in row["ciphertext"]
    assert row["accessibility"] == "after_first_unlock"


def test_encrypted_overwrite_and_delete(encrypted):
    encrypted.set_item("pin_hash", "one", DEFAULT_WRITE_OPTIONS)
    encrypted.set_item(
        "pin_hash", "two", SecureWriteOptions(accessibility=Accessibility.WHEN_UNLOCKED),
    )
    assert encrypted.get_item("pin_hash") == "two"

    encrypted.delete_item("pin_hash")
    encrypted.delete_item("pin_hash")
    assert encrypted.get_item("pin_hash") is None


def test_encrypted_tampered_row_fails_authentication(encrypted, db):
    encrypted.set_item("access_token", "tok-123", DEFAULT_WRITE_OPTIONS)
    db.sqlite.execute(
        "UPDATE secure_items SET ciphertext = ? WHERE key = ?", (b"\x00" * 7, "access_token"),
    )

    with pytest.raises(ValueError):
        encrypted.get_item("access_token")


def test_encrypted_ciphertext_bound_to_key(encrypted, db):
    encrypted.set_item("access_token", "tok-123", DEFAULT_WRITE_OPTIONS)
    db.sqlite.execute(
        """
        INSERT INTO secure_items (key, ciphertext, nonce, tag)
        SELECT 'refresh_token', ciphertext, nonce, tag FROM secure_items WHERE key = 'access_token'
        """
    )

    with pytest.raises(ValueError):
        encrypted.get_item("refresh_token")


def test_salt_reused_across_instances(encrypted, db, logger, tmp_path):
    encrypted.set_item("access_token", "tok-123", DEFAULT_WRITE_OPTIONS)
    reopened = EncryptedSqliteStorage(
        db=db, logger=logger, salt_path=tmp_path / "salt.bin", iterations=1_000,
    )

    assert reopened.get_item("access_token") == "tok-123"


@pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
def test_salt_file_is_owner_only(encrypted, tmp_path):
    encrypted.set_item("k", "v", DEFAULT_WRITE_OPTIONS)

    mode = stat.S_IMODE((tmp_path / "salt.bin").stat().st_mode)
    assert mode == 0o600


# ---------------------------------------------------------------------------
# KeyringSecureStorage
# ---------------------------------------------------------------------------

def test_keyring_round_trip(memory_keyring):
    storage = KeyringSecureStorage(service_name="storefront-tests")

    assert storage.is_available()
    storage.set_item("access_token", "tok", DEFAULT_WRITE_OPTIONS)
    assert storage.get_item("access_token") == "tok"
    assert memory_keyring.passwords[("storefront-tests", "access_token")] == "tok"

    storage.delete_item("access_token")
    storage.delete_item("access_token")
    assert storage.get_item("access_token") is None


def test_keyring_fail_backend_reports_unavailable():
    previous = keyring.get_keyring()
    keyring.set_keyring(fail.Keyring())
    try:
        assert not KeyringSecureStorage(service_name="storefront-tests").is_available()
    finally:
        keyring.set_keyring(previous)
