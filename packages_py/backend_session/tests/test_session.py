"""
Tests for BackendSession (session.py)
Logic testing: reinitialize, observational health check, startup report, lifecycle
"""
import asyncio
from dataclasses import replace

import pytest

from backend_session.config import SessionConfig
from backend_session.errors import NoReachableEndpointError
from backend_session.session import BackendSession, get_backend_session, reset_backend_session
from backend_session.types import AuthState, EndpointClass

from .conftest import DDNS_URL, LAN_URL


@pytest.fixture
def session(session_config, mock_client):
    return BackendSession(session_config, httpx_client=mock_client)


class TestReinitialize:

    @pytest.mark.asyncio
    async def test_new_handle_and_fresh_probe_round(self, session):
        await session.authenticate()
        old = await session.get_connection()

        new = await session.reinitialize()

        assert new is not old
        assert old.closed is True
        assert await session.get_connection() is new
        assert session.connections.prober.probe_count == 2
        assert session.state is AuthState.UNAUTHENTICATED
        assert session.session.attempt_count == 0

    @pytest.mark.asyncio
    async def test_switches_endpoint_when_topology_changes(self, session, backend):
        first = await session.get_connection()
        assert first.base_url == DDNS_URL

        backend.unreachable.add("ddns.test")
        second = await session.reinitialize()

        assert second.base_url == LAN_URL
        assert session.connections.selected.classification is EndpointClass.SECONDARY

    @pytest.mark.asyncio
    async def test_reauthenticates_after_reinitialize(self, session, backend):
        await session.authenticate()
        await session.reinitialize()

        result = await session.authenticate()

        assert result.cached is False
        assert backend.auth_calls() == 2

    @pytest.mark.asyncio
    async def test_discards_round_started_before_reset(self, session, backend):
        """A first connection still probing must not leak its result past a reset."""
        backend.probe_delays["ddns.test"] = 0.1
        events = []
        session.connections.on(lambda e: events.append(e.type))

        first = asyncio.create_task(session.get_connection())
        await asyncio.sleep(0.03)
        backend.unreachable.add("ddns.test")

        handle = await session.reinitialize()

        assert handle.base_url == LAN_URL
        assert await first is handle
        assert session.connections.prober.probe_count == 2
        assert events == ["probe:complete", "connection:discarded", "probe:complete", "connection:created"]

    @pytest.mark.asyncio
    async def test_unreachable_after_reset_raises(self, session, backend):
        await session.get_connection()
        backend.unreachable.update({"ddns.test", "lan.test"})

        with pytest.raises(NoReachableEndpointError):
            await session.reinitialize()

        assert session.connections.handle is None


class TestCheckConnection:

    @pytest.mark.asyncio
    async def test_does_not_touch_handle_or_auth(self, session, backend):
        await session.authenticate()
        handle = await session.get_connection()
        rounds = session.connections.prober.probe_count

        result = await session.check_connection()

        assert result.connected is True
        assert result.url == DDNS_URL
        assert result.status_code == 200
        assert session.connections.handle is handle
        assert session.state is AuthState.AUTHENTICATED
        assert session.connections.prober.probe_count == rounds
        assert backend.probe_calls("lan.test") == 1

    @pytest.mark.asyncio
    async def test_reports_outage_without_reconnecting(self, session, backend):
        await session.authenticate()
        handle = await session.get_connection()
        backend.unreachable.add("ddns.test")

        result = await session.check_connection()

        assert result.connected is False
        assert result.url == DDNS_URL
        assert result.error
        assert session.connections.handle is handle
        assert session.state is AuthState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_before_selection(self, session, backend):
        result = await session.check_connection()

        assert result.connected is False
        assert result.url is None
        assert result.error == "No endpoint selected"
        assert session.connections.handle is None
        assert backend.probe_calls() == 0

    @pytest.mark.asyncio
    async def test_error_status_counts_as_connected(self, session, backend):
        await session.get_connection()
        backend.probe_status = 503

        result = await session.check_connection()

        assert result.connected is True
        assert result.status_code == 503


class TestInitialize:

    @pytest.mark.asyncio
    async def test_success_report(self, session):
        report = await session.initialize()

        assert report.success is True
        assert report.url == DDNS_URL
        assert report.classification is EndpointClass.PRIMARY
        assert report.health.connected is True
        assert report.to_dict()["classification"] == "primary"

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self, session, backend):
        backend.unreachable.update({"ddns.test", "lan.test"})

        report = await session.initialize()

        assert report.success is False
        assert "No reachable endpoint" in report.error
        assert report.to_dict()["health"] is None


class TestAuthenticatedConnection:

    @pytest.mark.asyncio
    async def test_returns_authenticated_shared_handle(self, session, backend):
        handle = await session.authenticated_connection()

        assert handle is await session.get_connection()
        assert handle.auth_store.is_valid is True

        response = await handle.get("/api/collections/students/records")
        assert response.status_code == 404
        assert backend.calls[("ddns.test", "/api/collections/students/records")] == 1


class TestLifecycle:

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError, match="at least one candidate"):
            BackendSession(SessionConfig(candidates=[]))

    def test_env_override_applied(self, monkeypatch, session_config):
        monkeypatch.setenv("BACKEND_URL", "http://override.test:8090")

        session = BackendSession(session_config)

        assert session.config.override_url == "http://override.test:8090"

    @pytest.mark.asyncio
    async def test_closed_session_refuses_work(self, session):
        handle = await session.get_connection()

        await session.aclose()
        await session.aclose()

        assert handle.closed is True
        with pytest.raises(RuntimeError, match="closed"):
            await session.get_connection()
        with pytest.raises(RuntimeError):
            await session.authenticate()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, session_config, mock_client):
        async with BackendSession(session_config, httpx_client=mock_client) as session:
            handle = await session.get_connection()

        assert handle.closed is True


class TestDefaultSession:

    @pytest.mark.asyncio
    async def test_singleton_accessor(self, session_config):
        config = replace(session_config, override_url="http://override.test:8090")
        try:
            first = get_backend_session(config)
            assert get_backend_session() is first

            await reset_backend_session()
            assert get_backend_session(config) is not first
        finally:
            await reset_backend_session()
