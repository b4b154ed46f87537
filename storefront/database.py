"""
Local Database Layer.

Holds the single SQLite connection backing both credential tiers of the
session engine:

- ``app_settings``: the plaintext tier (opt-in flags, the guest flag and
  the PIN hash backup mirror).
- ``secure_items``: ciphertext written by ``EncryptedSqliteStorage`` when
  the OS keychain is not used as the secure tier.

This module only manages the raw connection; query logic lives in the
services that own each table.

Usage (dependency injection at app startup)::

    from storefront.database import DatabaseManager
    from storefront.logger import StructuredLogger

    db = DatabaseManager(
        sqlite_path=Path("storefront_local.db"),
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Union

from storefront.logger import StructuredLogger


class DatabaseManager:
    """Manages the connection to the local SQLite database.

    Fully configured at construction time via dependency injection.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"`` for an ephemeral database.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the lock serialising SQLite access.

        Secure-tier writes run on worker threads (``asyncio.to_thread``),
        so every statement followed by ``commit()`` acquires this lock::

            with db.write_lock:
                db.sqlite.execute("INSERT ...")
                db.sqlite.commit()
        """
        return self._write_lock

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            if self._closed:
                return
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                pass
            self._closed = True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open (or create) a SQLite database with defensive error handling.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if str(path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
