"""
Backend session context.

Composes the prober, connection manager, auth coordinator, and health
checker behind one object that the data-access layer receives, instead of
reading module-level globals. A process-wide default instance is available
through get_backend_session() for applications that want one.

Lifecycle:
    session = BackendSession(config)       # nothing touches the network yet
    handle = await session.authenticated_connection()
    ...
    await session.reinitialize()           # topology changed
    await session.aclose()                 # teardown
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .auth import AuthCoordinator
from .config import Credentials, SessionConfig, merge_config, validate_config
from .connection import ConnectionManager, HandleFactory
from .errors import BackendSessionError
from .handle import ConnectionHandle
from .health import HealthChecker
from .prober import EndpointProber
from .types import AuthResult, AuthSession, AuthState, ConnectionCheckResult, InitializeReport

logger = logging.getLogger("backend_session.session")


class BackendSession:
    """One authenticated path to the backend."""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        prober: Optional[EndpointProber] = None,
        handle_factory: Optional[HandleFactory] = None,
        httpx_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the session. No network activity happens here.

        Args:
            config: Session configuration, merged with the environment
            prober: Custom prober (defaults to one built from config)
            handle_factory: Custom handle factory (defaults to ConnectionHandle)
            httpx_client: Shared client for the default prober and handles
        """
        self._config = merge_config(config)
        errors = validate_config(self._config)
        if errors:
            raise ValueError(f"Invalid session config: {'; '.join(errors)}")

        if handle_factory is None and httpx_client is not None:
            handle_factory = _shared_client_factory(httpx_client)

        self._prober = prober or EndpointProber(
            timeout_seconds=self._config.probe_timeout_seconds,
            health_path=self._config.health_path,
            httpx_client=httpx_client,
        )
        self._connections = ConnectionManager(self._config, self._prober, handle_factory)
        self._auth = AuthCoordinator(self._config, self._connections.get_connection)
        self._health = HealthChecker(self._connections, self._prober)
        self._closed = False

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def auth(self) -> AuthCoordinator:
        return self._auth

    @property
    def state(self) -> AuthState:
        return self._auth.state

    @property
    def session(self) -> AuthSession:
        """Snapshot of the auth session."""
        return self._auth.session

    async def get_connection(self) -> ConnectionHandle:
        """Return the shared connection handle, selecting an endpoint on first use."""
        self._ensure_open()
        return await self._connections.get_connection()

    async def authenticate(self, credentials: Optional[Credentials] = None) -> AuthResult:
        """Authenticate the shared connection (single-flight)."""
        self._ensure_open()
        return await self._auth.authenticate(credentials)

    async def authenticated_connection(self, credentials: Optional[Credentials] = None) -> ConnectionHandle:
        """Shared handle, authenticated. What a data-access call should use."""
        await self.authenticate(credentials)
        return await self.get_connection()

    async def check_connection(self) -> ConnectionCheckResult:
        """Observational health check of the selected endpoint."""
        return await self._health.check_connection()

    async def reinitialize(self) -> ConnectionHandle:
        """
        Discard connection and auth state together, then reconnect.

        The handle detach and the auth reset happen with no suspension point
        in between, so no caller can observe one without the other.
        """
        self._ensure_open()
        logger.info("BackendSession.reinitialize: discarding connection and auth state")
        old = self._connections.detach()
        self._auth.reset()
        if old is not None:
            await old.aclose()
        return await self._connections.get_connection()

    async def initialize(self) -> InitializeReport:
        """
        Select an endpoint, build the connection, and check its health.

        Never raises for connectivity problems; they are reported instead.
        """
        try:
            handle = await self.get_connection()
        except BackendSessionError as e:
            logger.error(f"BackendSession.initialize: {e}")
            return InitializeReport(success=False, error=str(e))

        health = await self.check_connection()
        selected = self._connections.selected
        logger.info(
            f"BackendSession.initialize: using {handle.base_url}, connected={health.connected}"
        )
        return InitializeReport(
            success=True,
            url=handle.base_url,
            classification=selected.classification if selected else None,
            health=health,
        )

    async def aclose(self) -> None:
        """Tear down: drop auth state, close the handle and the prober."""
        if self._closed:
            return
        self._closed = True
        self._auth.reset()
        await self._connections.aclose()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("BackendSession has been closed")

    async def __aenter__(self) -> "BackendSession":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def _shared_client_factory(client: httpx.AsyncClient) -> HandleFactory:
    def factory(base_url: str, config: SessionConfig) -> ConnectionHandle:
        return ConnectionHandle(
            base_url,
            httpx_client=client,
            timeout_seconds=config.request_timeout_seconds,
            auth_path=config.auth_path,
        )
    return factory


_backend_session: Optional[BackendSession] = None


def get_backend_session(config: Optional[SessionConfig] = None) -> BackendSession:
    """
    Get or create the process-wide backend session.

    Args:
        config: Used only when the instance is created by this call.
    """
    global _backend_session
    if _backend_session is None:
        _backend_session = BackendSession(config)
    return _backend_session


async def reset_backend_session() -> None:
    """Close and forget the process-wide session (useful for testing)."""
    global _backend_session
    session = _backend_session
    _backend_session = None
    if session is not None:
        await session.aclose()
