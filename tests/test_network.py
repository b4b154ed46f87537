"""Tests for the two-stage reachability guard."""

from __future__ import annotations

import httpx
import pytest

from storefront.errors import NetworkUnavailableError
from storefront.services.network import ReachabilityGuard, RouteConnectivityProbe

from conftest import API_HOST, FakeConnectivity


async def test_backend_reachable(services, backend):
    guard = services["reachability_guard"]

    await guard.check_backend_or_raise()

    assert await guard.is_backend_reachable()
    assert backend.count("GET", "/health") == 2


async def test_offline_skips_health_probe(services, backend, connectivity):
    connectivity.connected = False
    guard = services["reachability_guard"]

    with pytest.raises(NetworkUnavailableError):
        await guard.check_backend_or_raise()

    assert backend.count("GET", "/health") == 0


async def test_unhealthy_backend_raises_same_error_kind(services, backend):
    backend.healthy = False

    with pytest.raises(NetworkUnavailableError) as exc_info:
        await services["reachability_guard"].check_backend_or_raise()

    assert "server" in exc_info.value.message


async def test_health_timeout_is_unavailable(logger):
    def hang(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async with httpx.AsyncClient(base_url=API_HOST, transport=httpx.MockTransport(hang)) as http:
        guard = ReachabilityGuard(
            http=http,
            probe=FakeConnectivity(),
            health_path="/health",
            health_timeout_s=0.5,
            logger=logger,
        )
        assert not await guard.is_backend_reachable()


async def test_probe_failure_counts_as_offline(logger):
    class BrokenProbe:
        async def is_connected(self) -> bool:
            raise RuntimeError("no radio state")

    async with httpx.AsyncClient(base_url=API_HOST) as http:
        guard = ReachabilityGuard(
            http=http, probe=BrokenProbe(), health_path="/health", health_timeout_s=1, logger=logger,
        )
        with pytest.raises(NetworkUnavailableError):
            await guard.check_internet_or_raise()


async def test_route_probe_handles_unroutable_address():
    probe = RouteConnectivityProbe("not-an-address.invalid")

    assert await probe.is_connected() is False
