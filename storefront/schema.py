"""
Local Credential Database Schema.

``initialize_schema`` brings the SQLite file to ``CURRENT_SCHEMA_VERSION``
and is safe to call on every start.  A fresh file receives the full DDL
in one go; an older file replays the registered steps above its recorded
version, so a user's PIN backup and opt-in flags survive upgrades.

To change the schema, bump ``CURRENT_SCHEMA_VERSION``, update
``_FRESH_DDL`` and register a step in ``_STEPS`` under the new version.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from storefront.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 2

_VERSION_DDL: str = """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_FRESH_DDL: tuple[str, ...] = (
    # plaintext tier
    """
    CREATE TABLE IF NOT EXISTS app_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # secure tier: one AES-GCM ciphertext per key
    """
    CREATE TABLE IF NOT EXISTS secure_items (
        key TEXT PRIMARY KEY,
        ciphertext BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        accessibility TEXT NOT NULL DEFAULT 'after_first_unlock',
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


# ---------------------------------------------------------------------------
# Incremental steps
# ---------------------------------------------------------------------------

def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    # PRAGMA cannot take bound parameters; only literal names reach here.
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _add_accessibility_column(conn: sqlite3.Connection) -> str:
    """v2: record the keychain accessibility class of each secure item.

    v1 rows were all written after-first-unlock, the column default.
    """
    if "accessibility" in _columns(conn, "secure_items"):
        return "accessibility column already present"
    conn.execute(
        "ALTER TABLE secure_items ADD COLUMN accessibility TEXT "
        "NOT NULL DEFAULT 'after_first_unlock'"
    )
    return "added secure_items.accessibility"


_STEPS: dict[int, Callable[[sqlite3.Connection], str]] = {
    2: _add_accessibility_column,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _recorded_version(conn: sqlite3.Connection) -> int:
    conn.execute(_VERSION_DDL)
    conn.commit()
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row is not None else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create or upgrade the schema.

    The upgrade is a single transaction: on failure it is rolled back and
    the error re-raised, leaving the recorded version untouched so the
    next start retries.
    """
    current = _recorded_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    try:
        if current == 0:
            for ddl in _FRESH_DDL:
                conn.execute(ddl)
            logger.info("Created %d tables.", len(_FRESH_DDL))
        else:
            for version in sorted(v for v in _STEPS if current < v <= CURRENT_SCHEMA_VERSION):
                outcome = _STEPS[version](conn)
                logger.info("Schema step v%d: %s.", version, outcome)

        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET
                version = excluded.version,
                applied_at = CURRENT_TIMESTAMP
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema upgrade from version %d failed; rolled back.", current)
        raise

    logger.info("Schema at version %d.", CURRENT_SCHEMA_VERSION)
