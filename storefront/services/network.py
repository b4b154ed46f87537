"""
Network Reachability Guard.

Two-stage check used before any server-dependent transition:

1. device connectivity (cheap, no request on the wire);
2. backend liveness, a bounded ``GET`` on the health endpoint.

Stage 2 is skipped when stage 1 fails.  Both stages raise
``NetworkUnavailableError`` so call sites react uniformly and decide for
themselves whether the failure is fatal.
"""

from __future__ import annotations

import asyncio
import socket
from typing import Optional, Protocol

import httpx

from storefront.errors import NetworkUnavailableError
from storefront.logger import StructuredLogger
from storefront.services.base_service import BaseService

BACKEND_UNREACHABLE_MESSAGE: str = "No connection to the server. Check your connection."


class ConnectivityProbe(Protocol):
    """Device-level connectivity state (airplane mode, no radio)."""

    async def is_connected(self) -> bool: ...  # noqa: E704


class RouteConnectivityProbe:
    """Reports connectivity by asking the OS for a route to *address*.

    Connecting a UDP socket only resolves the route; no datagram is sent.
    """

    def __init__(self, address: str, port: int = 53) -> None:
        self._address: str = address
        self._port: int = port

    async def is_connected(self) -> bool:
        return await asyncio.to_thread(self._has_route)

    def _has_route(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect((self._address, self._port))
            return True
        except OSError:
            return False


class ReachabilityGuard(BaseService):
    """Connectivity and backend health checks.

    Parameters
    ----------
    http:
        Shared client whose base URL points at the backend.
    probe:
        Device connectivity adapter.
    health_path:
        Liveness endpoint; any 2xx means reachable.
    health_timeout_s:
        Upper bound for the liveness request.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        probe: ConnectivityProbe,
        health_path: str,
        health_timeout_s: float,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._http: httpx.AsyncClient = http
        self._probe: ConnectivityProbe = probe
        self._health_path: str = health_path
        self._health_timeout_s: float = health_timeout_s

    async def check_internet_or_raise(self) -> None:
        """Raise ``NetworkUnavailableError`` when the device is offline.

        An undeterminable state counts as offline.
        """
        try:
            connected = await self._probe.is_connected()
        except Exception as exc:
            self._logger.warning("Connectivity probe failed: %s", exc)
            connected = False
        if not connected:
            raise NetworkUnavailableError()

    async def check_backend_or_raise(self, timeout_s: Optional[float] = None) -> None:
        """Raise ``NetworkUnavailableError`` unless the backend answers 2xx."""
        await self.check_internet_or_raise()

        timeout = timeout_s if timeout_s is not None else self._health_timeout_s
        try:
            response = await self._http.get(
                self._health_path,
                timeout=httpx.Timeout(timeout),
                auth=None,
            )
        except httpx.HTTPError as exc:
            self._logger.warning("Backend health probe failed: %s", exc)
            raise NetworkUnavailableError(BACKEND_UNREACHABLE_MESSAGE) from exc

        if not response.is_success:
            self._logger.warning("Backend health probe returned HTTP %d.", response.status_code)
            raise NetworkUnavailableError(BACKEND_UNREACHABLE_MESSAGE)

    async def is_backend_reachable(self, timeout_s: Optional[float] = None) -> bool:
        try:
            await self.check_backend_or_raise(timeout_s)
        except NetworkUnavailableError:
            return False
        return True
