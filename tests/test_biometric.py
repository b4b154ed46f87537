"""Tests for the biometric gate."""

from __future__ import annotations

import pytest

from storefront.services.credential_store import KEY_ACCESS_TOKEN, KEY_REFRESH_TOKEN


@pytest.fixture
def opted_in(settings):
    settings.set_biometric_flag("1")


async def test_success_releases_stored_token(services, secure_backend, biometrics, opted_in):
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    token = await services["biometric_gate"].restore_biometric_session()

    assert token == "stored"
    assert biometrics.prompts == ["Sign in with biometrics"]


async def test_never_refreshes_when_token_missing(services, secure_backend, backend, biometrics, opted_in):
    secure_backend.items[KEY_REFRESH_TOKEN] = "refresh-1"

    token = await services["biometric_gate"].restore_biometric_session()

    assert token is None
    assert len(biometrics.prompts) == 1
    assert backend.count("POST", "/auth/refresh") == 0


async def test_no_prompt_without_opt_in(services, secure_backend, biometrics):
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    assert await services["biometric_gate"].restore_biometric_session() is None
    assert biometrics.prompts == []


@pytest.mark.parametrize("attribute", ["hardware", "enrolled"])
async def test_no_prompt_without_capability(services, secure_backend, biometrics, opted_in, attribute):
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    setattr(biometrics, attribute, False)

    assert await services["biometric_gate"].restore_biometric_session() is None
    assert biometrics.prompts == []


async def test_no_prompt_when_secure_store_unusable(services, secure_backend, biometrics, opted_in):
    secure_backend.broken = True

    assert await services["biometric_gate"].restore_biometric_session() is None
    assert biometrics.prompts == []


async def test_dismissed_prompt_returns_none(services, secure_backend, biometrics, opted_in):
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"
    biometrics.accept = False

    assert await services["biometric_gate"].restore_biometric_session() is None


async def test_adapter_exception_is_swallowed(services, secure_backend, biometrics, opted_in, monkeypatch):
    secure_backend.items[KEY_ACCESS_TOKEN] = "stored"

    async def explode(prompt: str) -> bool:
        raise RuntimeError("sensor fault")

    monkeypatch.setattr(biometrics, "authenticate", explode)

    assert await services["biometric_gate"].restore_biometric_session() is None
