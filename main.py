"""
Storefront Session Engine Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema and runs the startup session flow once, logging
the entry screen it chose.  Every subsystem is wired here; no
module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys
from pathlib import Path

from storefront.auth import GuestModeGate, SessionManager
from storefront.config import get_config
from storefront.database import DatabaseManager
from storefront.logger import StructuredLogger, get_logger
from storefront.models.auth_models import FlowOutcome
from storefront.schema import initialize_schema
from storefront.services import create_services


async def run_startup_flow() -> FlowOutcome:
    """Wire dependencies and run the session orchestrator once."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting storefront session engine...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (both credential tiers live here)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(config.SQLITE_PATH),
        logger=StructuredLogger(name="database"),
    )

    # DatabaseManager.close() is idempotent, so the atexit hook and the
    # finally-block below can both run.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Session identity (guest gate + holder)
    # ------------------------------------------------------------------
    session = SessionManager(GuestModeGate())

    # ------------------------------------------------------------------
    # 5. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(config=config, db=db, session=session)

    try:
        services["auth_service"].initialize_session()
        outcome = await services["session_orchestrator"].run()
        logger.info(
            "Entry screen: %s",
            outcome.route,
            extra={"notice": outcome.notice or "", "logged_in": outcome.is_logged_in},
        )
        return outcome
    finally:
        await services["http_client"].aclose()
        db.close()
        logger.info("Storefront session engine shut down.")


def main() -> None:
    asyncio.run(run_startup_flow())


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
