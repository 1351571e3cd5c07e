"""
Tests for FastAPI integration (integrations/fastapi.py)
Logic testing: lifespan, dependencies, 503 mapping
"""
import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend_session.integrations.fastapi import (
    ConnectionDep,
    SessionDep,
    create_backend_lifespan,
    get_health_status,
)
from backend_session.session import BackendSession
from backend_session.types import AuthState


def build_app(session: BackendSession, initialize: bool = True) -> FastAPI:
    app = FastAPI(lifespan=create_backend_lifespan(session=session, initialize=initialize))

    @app.get("/whoami")
    async def whoami(conn: ConnectionDep):
        return {"url": conn.base_url, "authenticated": conn.auth_store.is_valid}

    @app.get("/health/backend")
    async def backend_health(session: SessionDep):
        return await get_health_status(session)

    return app


@pytest.fixture
def session(session_config, mock_client):
    return BackendSession(session_config, httpx_client=mock_client)


class TestLifespan:

    # Happy Path: startup selects an endpoint
    def test_initialize_on_startup(self, session, backend):
        app = build_app(session)
        with TestClient(app):
            assert app.state.backend_session is session
            assert session.connections.handle is not None

        assert session.connections.handle is None

    # Decision: initialize disabled
    def test_lazy_startup(self, session, backend):
        with TestClient(build_app(session, initialize=False)):
            assert session.connections.handle is None
            assert backend.probe_calls() == 0

    # Error Path: unreachable backend does not block startup
    def test_startup_survives_outage(self, session, backend):
        backend.unreachable.update({"ddns.test", "lan.test"})

        with TestClient(build_app(session)) as client:
            response = client.get("/health/backend")

        assert response.status_code == 200
        assert response.json()["status"] == "reconnecting"


class TestDependencies:

    def test_connection_dependency_authenticates(self, session, backend):
        with TestClient(build_app(session)) as client:
            response = client.get("/whoami")
            again = client.get("/whoami")

        assert response.status_code == 200
        assert response.json() == {"url": "http://ddns.test:8090", "authenticated": True}
        assert again.status_code == 200
        assert backend.auth_calls() == 1

    def test_unreachable_maps_to_503(self, session, backend):
        backend.unreachable.update({"ddns.test", "lan.test"})

        with TestClient(build_app(session, initialize=False)) as client:
            response = client.get("/whoami")

        assert response.status_code == 503
        assert "Backend unavailable" in response.json()["detail"]

    def test_auth_failure_maps_to_503(self, session, backend):
        backend.auth_responses = [httpx.Response(400, json={}) for _ in range(3)]

        with TestClient(build_app(session)) as client:
            response = client.get("/whoami")

        assert response.status_code == 503
        assert session.state is AuthState.FAILED

    def test_health_status(self, session, backend):
        with TestClient(build_app(session)) as client:
            client.get("/whoami")
            response = client.get("/health/backend")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["auth_state"] == "authenticated"
        assert body["connection"]["url"] == "http://ddns.test:8090"
