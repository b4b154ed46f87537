"""Tests for the startup decision procedure and the PIN login policy."""

from __future__ import annotations

import hashlib

import httpx
import pytest

from storefront.models.enums import FlowState, Route
from storefront.services import create_services
from storefront.services.auth_flow import NO_BACKEND_MESSAGE
from storefront.services.credential_store import (
    KEY_ACCESS_TOKEN,
    KEY_PIN_HASH,
    KEY_REFRESH_TOKEN,
)

from conftest import USER_EMAIL

PEPPER = "iskra.pin.v1"


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@pytest.fixture
def orchestrator(services):
    return services["session_orchestrator"]


# ---------------------------------------------------------------------------
# Startup flow
# ---------------------------------------------------------------------------

async def test_guest_flag_outranks_tokens(orchestrator, backend, secure_backend, settings, session):
    settings.set_guest_mode(True)
    settings.set_biometric_flag("1")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    secure_backend.items[KEY_REFRESH_TOKEN] = "refresh-1"

    outcome = await orchestrator.run()

    assert outcome.route == Route.GUEST_HOME
    assert outcome.trail == [FlowState.INIT, FlowState.GUEST_FORCED, FlowState.TERMINAL]
    assert not outcome.is_logged_in
    assert backend.count("GET", "/auth/me") == 0
    assert KEY_ACCESS_TOKEN not in secure_backend.items
    assert KEY_REFRESH_TOKEN not in secure_backend.items
    assert session.get_current_snapshot().is_guest


async def test_backend_down_stays_with_one_notice(orchestrator, backend, notifier):
    backend.healthy = False

    first = await orchestrator.run()
    second = await orchestrator.run()

    assert first.route == Route.STAY
    assert first.notice == NO_BACKEND_MESSAGE
    assert FlowState.BACKEND_UNREACHABLE in first.trail
    assert second.route == Route.STAY
    assert second.notice is None
    assert len(notifier.notices) == 1


async def test_offline_never_probes_backend(orchestrator, backend, connectivity):
    connectivity.connected = False

    outcome = await orchestrator.run()

    assert outcome.route == Route.STAY
    assert backend.calls == []


async def test_biometric_unlock_goes_home(orchestrator, backend, secure_backend, settings, session):
    settings.set_biometric_flag("1")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    outcome = await orchestrator.run()

    assert outcome.route == Route.HOME
    assert outcome.is_logged_in
    assert outcome.user.email == USER_EMAIL
    assert outcome.trail == [
        FlowState.INIT,
        FlowState.CHECKING_BACKEND,
        FlowState.BIOMETRIC_ATTEMPT,
        FlowState.TERMINAL,
    ]
    assert backend.count("GET", "/health") == 2
    assert session.get_current_snapshot().is_logged_in


async def test_biometric_recheck_can_be_disabled(
    config, db, session, backend, secure_backend, biometrics, connectivity, notifier, settings,
):
    settings.set_biometric_flag("1")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    container = create_services(
        config=config.model_copy(update={"AUTH_FLOW_RECHECK_AFTER_BIOMETRIC": False}),
        db=db,
        session=session,
        transport=httpx.MockTransport(backend),
        secure_backend=secure_backend,
        authenticator=biometrics,
        connectivity=connectivity,
        notifier=notifier,
    )
    try:
        outcome = await container["session_orchestrator"].run()
    finally:
        await container["http_client"].aclose()

    assert outcome.route == Route.HOME
    assert backend.count("GET", "/health") == 1


async def test_profile_failure_after_biometric_falls_back_to_sign_in(
    orchestrator, backend, secure_backend, settings, session,
):
    settings.set_biometric_flag("1")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    backend.me_status = 404

    outcome = await orchestrator.run()

    assert outcome.route == Route.SIGN_IN
    assert outcome.trail[-2:] == [FlowState.PASSWORD_REQUIRED, FlowState.TERMINAL]
    assert not session.get_current_snapshot().is_logged_in


async def test_pin_and_token_route_to_pin_login(orchestrator, backend, secure_backend):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    outcome = await orchestrator.run()

    assert outcome.route == Route.PIN_LOGIN
    assert outcome.trail == [
        FlowState.INIT,
        FlowState.CHECKING_BACKEND,
        FlowState.BIOMETRIC_ATTEMPT,
        FlowState.PIN_REQUIRED,
        FlowState.TERMINAL,
    ]
    assert backend.count("GET", "/auth/me") == 0


async def test_pin_restored_from_backup_routes_to_pin_login(orchestrator, secure_backend, settings):
    settings.set_pin_hash_backup(sha256("2468" + PEPPER))
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    outcome = await orchestrator.run()

    assert outcome.route == Route.PIN_LOGIN
    assert secure_backend.items[KEY_PIN_HASH] == sha256("2468" + PEPPER)


async def test_pin_without_token_routes_to_sign_in(orchestrator, secure_backend):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)

    outcome = await orchestrator.run()

    assert outcome.route == Route.SIGN_IN


async def test_nothing_stored_routes_to_sign_in(orchestrator):
    outcome = await orchestrator.run()

    assert outcome.route == Route.SIGN_IN
    assert outcome.trail[-2:] == [FlowState.PASSWORD_REQUIRED, FlowState.TERMINAL]


async def test_unusable_secure_store_routes_to_sign_in(orchestrator, secure_backend, biometrics, settings):
    settings.set_biometric_flag("1")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    secure_backend.broken = True

    outcome = await orchestrator.run()

    assert outcome.route == Route.SIGN_IN
    assert biometrics.prompts == []


async def test_unexpected_error_routes_to_sign_in(orchestrator, services, monkeypatch):
    async def explode():
        raise RuntimeError("corrupted state")

    monkeypatch.setattr(services["pin_service"], "load_stored_hash", explode)

    outcome = await orchestrator.run()

    assert outcome.route == Route.SIGN_IN
    assert not outcome.is_logged_in


# ---------------------------------------------------------------------------
# PIN screen
# ---------------------------------------------------------------------------

async def test_legacy_pin_user_resumes_session(orchestrator, backend, secure_backend, settings, session):
    secure_backend.items[KEY_PIN_HASH] = sha256("0000")
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    assert (await orchestrator.run()).route == Route.PIN_LOGIN

    outcome = await orchestrator.submit_pin("0000")

    assert outcome.route == Route.HOME
    assert outcome.is_logged_in
    assert outcome.user.email == USER_EMAIL
    assert secure_backend.items[KEY_PIN_HASH] == sha256("0000" + PEPPER)
    assert settings.get_pin_hash_backup() == sha256("0000" + PEPPER)
    assert backend.count("GET", "/auth/me") == 1
    assert session.get_current_snapshot().is_logged_in


async def test_rejected_pin_stays(orchestrator, backend, secure_backend):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    outcome = await orchestrator.submit_pin("1111")

    assert outcome.route == Route.STAY
    assert outcome.pin_rejected
    assert outcome.notice == "Incorrect PIN."
    assert backend.calls == []


async def test_correct_pin_blocked_while_backend_down(orchestrator, backend, secure_backend, session):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    backend.healthy = False

    outcome = await orchestrator.submit_pin("2468")

    assert outcome.route == Route.STAY
    assert outcome.notice == NO_BACKEND_MESSAGE
    assert not outcome.pin_rejected
    assert backend.count("GET", "/auth/me") == 0
    assert not session.get_current_snapshot().is_logged_in


async def test_correct_pin_refreshes_missing_token(orchestrator, backend, secure_backend):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    secure_backend.items[KEY_REFRESH_TOKEN] = "refresh-1"

    outcome = await orchestrator.submit_pin("2468")

    assert outcome.route == Route.HOME
    assert backend.count("POST", "/auth/refresh") == 1
    assert secure_backend.items[KEY_ACCESS_TOKEN] == "access-r1"


async def test_correct_pin_with_dead_session_routes_to_sign_in(orchestrator, backend, secure_backend):
    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    secure_backend.items[KEY_REFRESH_TOKEN] = "revoked"

    outcome = await orchestrator.submit_pin("2468")

    assert outcome.route == Route.SIGN_IN
    assert backend.count("POST", "/auth/refresh") == 1
    assert secure_backend.items[KEY_REFRESH_TOKEN] == "revoked"


async def test_submit_without_configured_pin(orchestrator):
    outcome = await orchestrator.submit_pin("2468")

    assert outcome.route == Route.SIGN_IN


async def test_enter_pin_screen(orchestrator, backend, secure_backend):
    assert (await orchestrator.enter_pin_screen()).route == Route.SIGN_IN

    secure_backend.items[KEY_PIN_HASH] = sha256("2468" + PEPPER)
    assert (await orchestrator.enter_pin_screen()).route == Route.STAY

    backend.healthy = False
    outcome = await orchestrator.enter_pin_screen()
    assert outcome.route == Route.BOOTSTRAP
    assert outcome.notice == NO_BACKEND_MESSAGE
