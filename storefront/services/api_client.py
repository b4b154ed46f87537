"""
Backend API Client.

The shared ``httpx.AsyncClient`` plus the policies every backend call
goes through:

- ``TokenRefreshAuth`` attaches the bearer token and, on a 401, performs
  one refresh and one retry of the original request.
- ``ApiClient`` fails fast when the device is offline, retries
  idempotent requests on transport errors, 5xx and 429, maps timeouts to
  ``BackendTimeoutError`` and emits a "backend lost" notice at most once
  per cooldown window.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any, Optional

import httpx

from storefront.config import AppConfig
from storefront.errors import (
    AuthInvalidError,
    BackendResponseError,
    BackendTimeoutError,
    NetworkUnavailableError,
)
from storefront.logger import StructuredLogger
from storefront.services.base_service import BaseService
from storefront.services.network import BACKEND_UNREACHABLE_MESSAGE, ReachabilityGuard
from storefront.services.notifier import CooldownNotifier
from storefront.services.token_service import TokenService

_IDEMPOTENT_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS"})
_TIMEOUT_MESSAGE: str = "The request timed out. Check your internet connection."
_BACKEND_LOST_TITLE: str = "Network"
_BACKEND_LOST_MESSAGE: str = "Lost connection to the server."


def build_http_client(
    config: AppConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared client.

    Content-Type is left to each request so form and JSON bodies both
    carry the right header.
    """
    return httpx.AsyncClient(
        base_url=config.api_base_url,
        timeout=httpx.Timeout(config.API_TIMEOUT_S),
        headers={"Accept": "application/json"},
        transport=transport,
    )


class TokenRefreshAuth(httpx.Auth):
    """Bearer auth with a single refresh-and-retry on 401.

    Install on the shared client once the ``TokenService`` exists::

        http.auth = TokenRefreshAuth(tokens)

    Requests sent with ``auth=None`` bypass it entirely, which is how the
    refresh and health calls avoid recursion.
    """

    def __init__(self, tokens: TokenService) -> None:
        self._tokens = tokens

    async def async_auth_flow(
        self, request: httpx.Request,
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._tokens.get_token(require_auth=False)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code != 401:
            return

        new_token = await self._tokens.refresh_access_token()
        if not new_token:
            return
        request.headers["Authorization"] = f"Bearer {new_token}"
        yield request


def raise_for_backend_status(response: httpx.Response) -> None:
    """Turn a non-2xx response into a ``SessionError``.

    The message keeps the status and body so friendly translation can
    recognise backend phrases such as ``"403 ... login failed"``.
    """
    if response.is_success:
        return
    try:
        body = json.dumps(response.json(), ensure_ascii=False)
    except ValueError:
        body = response.text
    message = f"{response.status_code} {body}".strip()
    if response.status_code == 401:
        raise AuthInvalidError(message)
    raise BackendResponseError(message, status_code=response.status_code)


class ApiClient(BaseService):
    """Policy wrapper around the shared client.

    Parameters
    ----------
    http:
        Shared client with ``TokenRefreshAuth`` installed.
    guard:
        Reachability guard used for the offline fast-fail.
    notifier:
        Cooldown-limited notifier for the "backend lost" notice.
    retries:
        Extra attempts for idempotent requests.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    backoff_s:
        Base delay; attempt *n* waits ``backoff_s * 2 ** n``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        guard: ReachabilityGuard,
        notifier: CooldownNotifier,
        retries: int,
        logger: StructuredLogger,
        backoff_s: float = 0.1,
    ) -> None:
        super().__init__(logger)
        self._http: httpx.AsyncClient = http
        self._guard: ReachabilityGuard = guard
        self._notifier: CooldownNotifier = notifier
        self._retries: int = retries
        self._backoff_s: float = backoff_s

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request under the offline, retry and timeout policies.

        Raises
        ------
        NetworkUnavailableError
            Device offline or the backend could not be reached.
        BackendTimeoutError
            The request (including retries) ran out of time.
        """
        try:
            await self._guard.check_internet_or_raise()
        except NetworkUnavailableError:
            self._notify_backend_lost()
            raise

        method = method.upper()
        max_attempts = self._retries + 1 if method in _IDEMPOTENT_METHODS else 1

        for attempt in range(max_attempts):
            last_attempt = attempt == max_attempts - 1
            try:
                response = await self._http.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                if not last_attempt:
                    await self._backoff(attempt, method, url, exc)
                    continue
                self._notify_backend_lost()
                raise BackendTimeoutError(_TIMEOUT_MESSAGE) from exc
            except httpx.TransportError as exc:
                if not last_attempt:
                    await self._backoff(attempt, method, url, exc)
                    continue
                self._notify_backend_lost()
                raise NetworkUnavailableError(BACKEND_UNREACHABLE_MESSAGE) from exc

            retryable = response.status_code >= 500 or response.status_code == 429
            if retryable and not last_attempt:
                await self._backoff(attempt, method, url, f"HTTP {response.status_code}")
                continue
            return response

        raise AssertionError("unreachable")  # pragma: no cover

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def _backoff(self, attempt: int, method: str, url: str, reason: object) -> None:
        delay = self._backoff_s * (2 ** attempt)
        self._logger.info(
            "Retrying %s %s in %.2fs after %s.", method, url, delay, reason,
        )
        await asyncio.sleep(delay)

    def _notify_backend_lost(self) -> None:
        self._notifier.notify_once(_BACKEND_LOST_TITLE, _BACKEND_LOST_MESSAGE)
