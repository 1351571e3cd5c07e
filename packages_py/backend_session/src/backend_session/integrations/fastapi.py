"""
FastAPI integration for backend_session.

Provides lifespan management, dependency injection helpers, and a health
status helper for routes.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncGenerator, Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from ..config import SessionConfig
from ..errors import BackendSessionError, LockTimeoutError
from ..handle import ConnectionHandle
from ..session import BackendSession


def create_backend_lifespan(
    config: Optional[SessionConfig] = None,
    initialize: bool = True,
    session: Optional[BackendSession] = None,
) -> Callable[[FastAPI], Any]:
    """
    Create a FastAPI lifespan that owns a BackendSession.

    The session is stored on ``app.state.backend_session`` and closed on
    shutdown.

    Args:
        config: Configuration for a session built at startup
        initialize: Select an endpoint and health-check it at startup
        session: Pre-built session to use instead of building one

    Usage:
        from fastapi import FastAPI
        from backend_session.integrations import create_backend_lifespan

        app = FastAPI(lifespan=create_backend_lifespan())
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        backend = session or BackendSession(config)
        app.state.backend_session = backend
        if initialize:
            # Reported, not raised: the app starts in a "reconnecting" state
            await backend.initialize()
        try:
            yield
        finally:
            await backend.aclose()

    return lifespan


def get_session(request: Request) -> BackendSession:
    """FastAPI dependency returning the app's BackendSession."""
    session = getattr(request.app.state, "backend_session", None)
    if session is None:
        raise RuntimeError("BackendSession not configured; use create_backend_lifespan()")
    return session


async def get_connection(session: Annotated[BackendSession, Depends(get_session)]) -> ConnectionHandle:
    """
    FastAPI dependency yielding the authenticated connection handle.

    Connectivity and auth failures become 503 so clients can retry.

    Usage:
        @app.get("/students")
        async def list_students(conn: ConnectionDep):
            response = await conn.get("/api/collections/students/records")
            return response.json()
    """
    try:
        return await session.authenticated_connection()
    except LockTimeoutError as e:
        raise HTTPException(status_code=503, detail=f"Backend busy, retry: {e}") from e
    except BackendSessionError as e:
        raise HTTPException(status_code=503, detail=f"Backend unavailable: {e}") from e


# Type aliases for cleaner FastAPI dependency injection
SessionDep = Annotated[BackendSession, Depends(get_session)]
ConnectionDep = Annotated[ConnectionHandle, Depends(get_connection)]


async def get_health_status(session: BackendSession) -> dict[str, Any]:
    """
    Health status for health check endpoints.

    Usage:
        @router.get("/health/backend")
        async def backend_health(session: SessionDep):
            return await get_health_status(session)
    """
    check = await session.check_connection()
    return {
        "status": "healthy" if check.connected else "reconnecting",
        "auth_state": session.state.value,
        "connection": check.to_dict(),
    }
