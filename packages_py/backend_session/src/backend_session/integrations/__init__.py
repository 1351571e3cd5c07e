"""
Framework integrations for backend_session.
"""
from .fastapi import (
    ConnectionDep,
    SessionDep,
    create_backend_lifespan,
    get_connection,
    get_health_status,
    get_session,
)

__all__ = [
    "ConnectionDep",
    "SessionDep",
    "create_backend_lifespan",
    "get_connection",
    "get_health_status",
    "get_session",
]
