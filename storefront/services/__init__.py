"""
Session Engine Services Package.

The ``create_services()`` factory wires every service of the session
engine together, returning a typed dict that the entry point and the
screens consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, TypedDict

import httpx

from storefront.auth import SessionManager
from storefront.config import AppConfig
from storefront.database import DatabaseManager
from storefront.logger import get_logger
from storefront.models.enums import PinSetupMode
from storefront.services.api_client import ApiClient, TokenRefreshAuth, build_http_client
from storefront.services.app_settings_service import AppSettingsService
from storefront.services.auth_flow import SessionOrchestrator
from storefront.services.auth_service import AuthService
from storefront.services.biometric import (
    BiometricAuthenticator,
    BiometricGate,
    UnsupportedBiometrics,
)
from storefront.services.credential_store import SecureCredentialStore
from storefront.services.network import (
    ConnectivityProbe,
    ReachabilityGuard,
    RouteConnectivityProbe,
)
from storefront.services.notifier import CooldownNotifier, LoggingNotifier, Notifier
from storefront.services.pin_entry import PinLoginController, PinSetupController
from storefront.services.pin_service import PinService
from storefront.services.secure_storage import (
    EncryptedSqliteStorage,
    KeyringSecureStorage,
    SecureStorageBackend,
)
from storefront.services.token_service import TokenService


class ServiceContainer(TypedDict):
    """Typed container for all session engine services."""

    # --- Infrastructure ---
    http_client: httpx.AsyncClient
    app_settings_service: AppSettingsService
    credential_store: SecureCredentialStore
    reachability_guard: ReachabilityGuard
    api_client: ApiClient

    # --- Credentials ---
    token_service: TokenService
    pin_service: PinService
    biometric_gate: BiometricGate

    # --- Orchestration ---
    auth_service: AuthService
    session_orchestrator: SessionOrchestrator


def build_secure_backend(
    config: AppConfig,
    db: DatabaseManager,
) -> SecureStorageBackend:
    """Select the secure tier implementation named by the configuration."""
    if config.SECURE_STORE_BACKEND == "encrypted_sqlite":
        return EncryptedSqliteStorage(
            db=db,
            logger=get_logger("secure_storage"),
            salt_path=Path(config.SECURE_SALT_PATH),
            iterations=config.SECURE_KDF_ITERATIONS,
        )
    return KeyringSecureStorage(service_name=config.KEYRING_SERVICE)


def create_services(
    config: AppConfig,
    db: DatabaseManager,
    session: SessionManager,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    secure_backend: Optional[SecureStorageBackend] = None,
    authenticator: Optional[BiometricAuthenticator] = None,
    connectivity: Optional[ConnectivityProbe] = None,
    notifier: Optional[Notifier] = None,
) -> ServiceContainer:
    """
    Wire all services together.

    This is the single composition root for the session engine.  The
    entry point calls it once at startup; tests call it with fake device
    adapters and an ``httpx.MockTransport``.

    Args:
        config: Application configuration.
        db: Initialised DatabaseManager (schema already applied).
        session: Shared identity holder.
        transport: Optional httpx transport (tests).
        secure_backend: Secure tier override; defaults per configuration.
        authenticator: Biometric adapter; defaults to no biometrics.
        connectivity: Device connectivity adapter; defaults to a route probe.
        notifier: Notice sink; defaults to logging.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Device adapters and infrastructure
    # ------------------------------------------------------------------
    http_client = build_http_client(config, transport=transport)
    base_notifier: Notifier = notifier or LoggingNotifier(logger)
    probe: ConnectivityProbe = connectivity or RouteConnectivityProbe(
        config.CONNECTIVITY_PROBE_ADDRESS,
    )

    app_settings_service = AppSettingsService(db=db, logger=logger)
    credential_store = SecureCredentialStore(
        backend=secure_backend or build_secure_backend(config, db),
        logger=logger,
    )
    reachability_guard = ReachabilityGuard(
        http=http_client,
        probe=probe,
        health_path=config.HEALTH_PATH,
        health_timeout_s=config.HEALTH_TIMEOUT_S,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 2. Credential services
    # ------------------------------------------------------------------
    token_service = TokenService(
        store=credential_store,
        settings=app_settings_service,
        http=http_client,
        logger=logger,
    )
    http_client.auth = TokenRefreshAuth(token_service)

    pin_service = PinService(
        store=credential_store,
        settings=app_settings_service,
        pepper=config.PIN_PEPPER.get_secret_value(),
        logger=logger,
    )
    biometric_gate = BiometricGate(
        tokens=token_service,
        store=credential_store,
        settings=app_settings_service,
        authenticator=authenticator or UnsupportedBiometrics(),
        prompt=config.BIOMETRIC_PROMPT,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration services (depend on other services)
    # ------------------------------------------------------------------
    api_client = ApiClient(
        http=http_client,
        guard=reachability_guard,
        notifier=CooldownNotifier(base_notifier, config.NOTICE_COOLDOWN_S),
        retries=config.API_RETRIES,
        logger=logger,
    )
    auth_service = AuthService(
        api=api_client,
        tokens=token_service,
        pins=pin_service,
        settings=app_settings_service,
        session=session,
        guard=reachability_guard,
        logger=logger,
        profile_cooldown_s=config.PROFILE_REFRESH_COOLDOWN_S,
    )
    session_orchestrator = SessionOrchestrator(
        tokens=token_service,
        pins=pin_service,
        biometric=biometric_gate,
        guard=reachability_guard,
        auth=auth_service,
        settings=app_settings_service,
        session=session,
        notifier=CooldownNotifier(base_notifier, config.NOTICE_COOLDOWN_S),
        logger=logger,
        recheck_after_biometric=config.AUTH_FLOW_RECHECK_AFTER_BIOMETRIC,
    )

    return ServiceContainer(
        http_client=http_client,
        app_settings_service=app_settings_service,
        credential_store=credential_store,
        reachability_guard=reachability_guard,
        api_client=api_client,
        token_service=token_service,
        pin_service=pin_service,
        biometric_gate=biometric_gate,
        auth_service=auth_service,
        session_orchestrator=session_orchestrator,
    )


def create_pin_login_controller(services: ServiceContainer) -> PinLoginController:
    return PinLoginController(services["session_orchestrator"])


def create_pin_setup_controller(
    services: ServiceContainer,
    config: AppConfig,
    mode: PinSetupMode = PinSetupMode.SETUP,
) -> PinSetupController:
    """Build a controller for the PIN setup (or reset) screen."""
    return PinSetupController(
        pins=services["pin_service"],
        tokens=services["token_service"],
        store=services["credential_store"],
        guard=services["reachability_guard"],
        mode=mode,
        enable_biometric=config.PIN_SETUP_ENABLES_BIOMETRIC,
        logger=get_logger("pin_setup"),
    )
