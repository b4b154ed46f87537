"""Shared fixtures: in-memory database, fake device adapters and a fake backend."""

from __future__ import annotations

import asyncio
import json
import os
import time
from typing import Optional
from urllib.parse import parse_qs

# Console-only logging for the test session; must precede storefront imports.
os.environ["LOG_FILE"] = ""

import httpx
import pytest

from storefront.auth import GuestModeGate, SessionManager
from storefront.config import AppConfig
from storefront.database import DatabaseManager
from storefront.logger import StructuredLogger
from storefront.models.auth_models import SecureWriteOptions
from storefront.schema import initialize_schema
from storefront.services import ServiceContainer, create_services
from storefront.services.app_settings_service import AppSettingsService

API_HOST = "http://backend.test"
USER_EMAIL = "buyer@example.com"
USER_PASSWORD = "secret123"

PROFILE = {
    "id": 7,
    "usercode": "C-007",
    "username": "Buyer",
    "email": USER_EMAIL,
    "manager": "ivanov",
    "discount": 5.0,
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSecureBackend:
    """Dict-backed secure tier with switchable failure modes."""

    def __init__(self) -> None:
        self.items: dict[str, str] = {}
        self.options: dict[str, SecureWriteOptions] = {}
        self.available = True
        self.broken = False
        self.calls = 0
        self.write_delay = 0.0
        self.writing: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def get_item(self, key: str) -> Optional[str]:
        self.calls += 1
        if self.broken:
            raise OSError("keychain locked")
        return self.items.get(key)

    def set_item(self, key: str, value: str, options: SecureWriteOptions) -> None:
        self.calls += 1
        if self.broken:
            raise OSError("keychain locked")
        self.writing.append(key)
        if self.write_delay:
            time.sleep(self.write_delay)
        self.items[key] = value
        self.options[key] = options

    def delete_item(self, key: str) -> None:
        self.calls += 1
        if self.broken:
            raise OSError("keychain locked")
        self.items.pop(key, None)


class FakeBiometrics:
    def __init__(self, hardware: bool = True, enrolled: bool = True, accept: bool = True) -> None:
        self.hardware = hardware
        self.enrolled = enrolled
        self.accept = accept
        self.prompts: list[str] = []

    async def has_hardware(self) -> bool:
        return self.hardware

    async def is_enrolled(self) -> bool:
        return self.enrolled

    async def authenticate(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.accept


class FakeConnectivity:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected

    async def is_connected(self) -> bool:
        return self.connected


class RecordingNotifier:
    def __init__(self) -> None:
        self.notices: list[tuple[str, str]] = []

    def notify(self, title: str, message: str) -> None:
        self.notices.append((title, message))


class FakeBackend:
    """Request handler for ``httpx.MockTransport`` mimicking the REST API."""

    def __init__(self) -> None:
        self.healthy = True
        self.calls: list[tuple[str, str]] = []
        self.rejected_access: set[str] = set()
        self.valid_refresh: set[str] = {"refresh-1"}
        self.rotate_refresh = True
        self.refresh_delay = 0.0
        self.refresh_issued = 0
        self.login_override: Optional[httpx.Response] = None
        self.me_status = 200
        self.me_failures_before_success = 0
        self.last_me_request: Optional[httpx.Request] = None

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method, path))

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))

        if path == "/health":
            return httpx.Response(200 if self.healthy else 503, json={"status": "ok"})
        if path in ("/auth/login", "/auth/activate"):
            return self._login(request)
        if path == "/auth/refresh":
            return await self._refresh(request)
        if path == "/auth/me":
            return self._me(request)
        return httpx.Response(404, json={"detail": "Not Found"})

    def _login(self, request: httpx.Request) -> httpx.Response:
        if self.login_override is not None:
            return self.login_override
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        login = form.get("username") or form.get("email")
        if login == USER_EMAIL and form.get("password") == USER_PASSWORD:
            return httpx.Response(
                200,
                json={
                    "access_token": "access-login",
                    "token_type": "bearer",
                    "refresh_token": "refresh-login",
                },
            )
        return httpx.Response(401, json={"detail": "Invalid credentials"})

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        body = json.loads(request.content or b"{}")
        refresh_token = body.get("refresh_token")
        if refresh_token not in self.valid_refresh:
            return httpx.Response(401, json={"detail": "Invalid refresh token"})
        self.refresh_issued += 1
        payload = {"access_token": f"access-r{self.refresh_issued}"}
        if self.rotate_refresh:
            new_refresh = f"refresh-r{self.refresh_issued}"
            self.valid_refresh.add(new_refresh)
            payload["refresh_token"] = new_refresh
        return httpx.Response(200, json=payload)

    def _me(self, request: httpx.Request) -> httpx.Response:
        self.last_me_request = request
        auth = request.headers.get("Authorization", "")
        token = auth.removeprefix("Bearer ").strip()
        if not token or token in self.rejected_access:
            return httpx.Response(401, json={"detail": "Not authenticated"})
        if self.me_failures_before_success > 0:
            self.me_failures_before_success -= 1
            return httpx.Response(503, json={"detail": "Service Unavailable"})
        if request.method == "DELETE":
            return httpx.Response(204)
        if self.me_status != 200:
            return httpx.Response(self.me_status, json={"detail": "boom"})
        return httpx.Response(200, json=PROFILE)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="tests", log_file="")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        API_HOST=API_HOST,
        LOG_FILE="",
        NOTICE_COOLDOWN_S=20.0,
        PROFILE_REFRESH_COOLDOWN_S=5.0,
        API_RETRIES=2,
    )


@pytest.fixture
def db(logger: StructuredLogger):
    manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def settings(db: DatabaseManager, logger: StructuredLogger) -> AppSettingsService:
    return AppSettingsService(db=db, logger=logger)


@pytest.fixture
def secure_backend() -> FakeSecureBackend:
    return FakeSecureBackend()


@pytest.fixture
def biometrics() -> FakeBiometrics:
    return FakeBiometrics()


@pytest.fixture
def connectivity() -> FakeConnectivity:
    return FakeConnectivity()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def session() -> SessionManager:
    return SessionManager(GuestModeGate())


@pytest.fixture
async def services(
    config: AppConfig,
    db: DatabaseManager,
    session: SessionManager,
    backend: FakeBackend,
    secure_backend: FakeSecureBackend,
    biometrics: FakeBiometrics,
    connectivity: FakeConnectivity,
    notifier: RecordingNotifier,
):
    container: ServiceContainer = create_services(
        config=config,
        db=db,
        session=session,
        transport=httpx.MockTransport(backend),
        secure_backend=secure_backend,
        authenticator=biometrics,
        connectivity=connectivity,
        notifier=notifier,
    )
    yield container
    await container["http_client"].aclose()
