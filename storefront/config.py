"""
Application Configuration.

Pydantic Settings model for the storefront session engine.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, model_validator


_DEFAULT_API_HOST: str = "http://localhost:8000"


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend ---
    API_HOST: str = _DEFAULT_API_HOST
    API_TIMEOUT_S: float = 15.0
    API_RETRIES: int = 2
    HEALTH_PATH: str = "/health"
    HEALTH_TIMEOUT_S: float = 4.0

    # --- Connectivity ---
    # Used only to ask the OS routing table whether any route exists;
    # no packet is sent.
    CONNECTIVITY_PROBE_ADDRESS: str = "8.8.8.8"

    # --- PIN ---
    PIN_PEPPER: SecretStr = SecretStr("iskra.pin.v1")

    # --- Notices ---
    NOTICE_COOLDOWN_S: float = 20.0
    PROFILE_REFRESH_COOLDOWN_S: float = 5.0

    # --- Biometrics ---
    BIOMETRIC_PROMPT: str = "Sign in with biometrics"

    # --- Startup flow variants ---
    AUTH_FLOW_RECHECK_AFTER_BIOMETRIC: bool = True
    PIN_SETUP_ENABLES_BIOMETRIC: bool = True

    # --- Secure storage ---
    SECURE_STORE_BACKEND: Literal["keyring", "encrypted_sqlite"] = "keyring"
    KEYRING_SERVICE: str = "storefront"
    SECURE_SALT_PATH: str = str(Path.home() / ".storefront_secure_salt")
    SECURE_KDF_ITERATIONS: int = 600_000

    # --- Local database ---
    SQLITE_PATH: str = "storefront_local.db"

    # --- Logging ---
    LOG_FILE: str = "storefront.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when running on placeholder values.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        which for ``API_HOST`` means every health probe fails against a
        local address nobody is listening on.
        """
        _log = logging.getLogger("storefront.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if self.API_HOST == _DEFAULT_API_HOST:
            _log.warning(
                "API_HOST is not configured; using %s.", _DEFAULT_API_HOST,
            )

        return self

    @property
    def api_base_url(self) -> str:
        """``API_HOST`` without a trailing slash."""
        return self.API_HOST.rstrip("/")


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern to avoid the lock overhead on the fast path while remaining
    thread-safe during first initialisation.

    Prefer direct constructor injection of ``AppConfig``; this factory
    exists for the logger and the entry point.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
