"""Tests for the backend reachability probe and gateway selection."""

import asyncio

from myedupro.backend.degraded import DegradedGateway
from myedupro.backend.errors import BackendError, ErrorKind
from myedupro.backend.factory import create_gateway
from myedupro.backend.http_gateway import HttpGateway
from myedupro.backend.probe import probe_connection
from myedupro.config import Settings


class TestProbeConnection:
    async def test_reachable_backend(self, gateway):
        assert await probe_connection(gateway) is True
        assert ("select:user_profiles", None) in gateway.calls

    async def test_identity_layer_network_failure(self, gateway):
        gateway.failures["get_current_session"] = BackendError(ErrorKind.NETWORK_UNAVAILABLE, "refused")
        assert await probe_connection(gateway) is False

    async def test_data_layer_timeout(self, gateway):
        gateway.failures["select:user_profiles"] = BackendError(ErrorKind.TIMEOUT, "timed out")
        assert await probe_connection(gateway) is False

    async def test_missing_table_still_reachable(self, gateway):
        gateway.failures["select:user_profiles"] = BackendError(
            ErrorKind.NOT_FOUND, "relation does not exist", "42P01"
        )
        assert await probe_connection(gateway) is True

    async def test_unanswered_probe_times_out(self, gateway):
        gateway.gates["get_current_session"] = asyncio.Event()
        assert await probe_connection(gateway, timeout=0.05) is False

    async def test_unexpected_exception_reports_unreachable(self, gateway):
        async def explode():
            raise RuntimeError("boom")

        gateway.get_current_session = explode
        assert await probe_connection(gateway) is False

    async def test_degraded_gateway_is_unreachable(self):
        assert await probe_connection(DegradedGateway()) is False


class TestCreateGateway:
    async def test_missing_config_selects_degraded(self, state_store):
        settings = Settings(backend_url="", backend_anon_key="")
        gateway = await create_gateway(settings, state_store)
        assert isinstance(gateway, DegradedGateway)
        assert gateway.reason == "config_missing"

    async def test_placeholder_config_selects_degraded(self, state_store):
        settings = Settings(
            backend_url="https://your-project.supabase.co",
            backend_anon_key="your-anon-key",
        )
        gateway = await create_gateway(settings, state_store)
        assert isinstance(gateway, DegradedGateway)

    async def test_valid_config_without_probe(self, state_store):
        settings = Settings(
            backend_url="https://abc.supabase.co",
            backend_anon_key="key",
            probe_on_startup=False,
        )
        gateway = await create_gateway(settings, state_store)
        assert isinstance(gateway, HttpGateway)
        await gateway.aclose()

    async def test_failed_probe_selects_degraded(self, state_store, monkeypatch):
        async def unreachable(gateway, timeout=5.0):
            return False

        monkeypatch.setattr("myedupro.backend.factory.probe_connection", unreachable)
        settings = Settings(
            backend_url="https://abc.supabase.co",
            backend_anon_key="key",
            probe_on_startup=True,
        )
        gateway = await create_gateway(settings, state_store)
        assert isinstance(gateway, DegradedGateway)
        assert gateway.reason == "probe_failed"
