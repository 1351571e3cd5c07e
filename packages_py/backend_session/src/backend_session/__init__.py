"""
Connectivity and session layer for a multi-address backend.

Probes candidate endpoints, picks the best reachable one, memoizes a single
connection handle, and coordinates single-flight authentication.
"""
from .types import (
    EndpointClass,
    AuthState,
    EndpointCandidate,
    ProbeResult,
    AuthSession,
    InFlightAuthAttempt,
    AuthResult,
    ConnectionCheckResult,
    InitializeReport,
    SessionEvent,
    SessionEventListener,
)
from .errors import (
    BackendSessionError,
    ProbeError,
    ProbeTimeoutError,
    ProbeNetworkError,
    NoReachableEndpointError,
    AuthError,
    AuthenticationRejectedError,
    AuthenticationTransportError,
    AuthenticationFailedError,
    AuthSessionResetError,
    MissingCredentialsError,
    LockTimeoutError,
)
from .config import (
    Credentials,
    SessionConfig,
    DEFAULT_SESSION_CONFIG,
    DEFAULT_CANDIDATES,
    DEFAULT_FALLBACK_URL,
    calculate_backoff_delay,
    credentials_from_env,
    resolve_override_url,
    merge_config,
    validate_config,
)
from .settings import BackendSettings, SettingsError, load_session_config
from .prober import EndpointProber
from .selector import select_endpoint
from .handle import AuthStore, ConnectionHandle
from .connection import ConnectionManager
from .auth import AuthCoordinator
from .health import HealthChecker
from .session import BackendSession, get_backend_session, reset_backend_session


__all__ = [
    # Types
    "EndpointClass",
    "AuthState",
    "EndpointCandidate",
    "ProbeResult",
    "AuthSession",
    "InFlightAuthAttempt",
    "AuthResult",
    "ConnectionCheckResult",
    "InitializeReport",
    "SessionEvent",
    "SessionEventListener",
    # Errors
    "BackendSessionError",
    "ProbeError",
    "ProbeTimeoutError",
    "ProbeNetworkError",
    "NoReachableEndpointError",
    "AuthError",
    "AuthenticationRejectedError",
    "AuthenticationTransportError",
    "AuthenticationFailedError",
    "AuthSessionResetError",
    "MissingCredentialsError",
    "LockTimeoutError",
    # Config
    "Credentials",
    "SessionConfig",
    "DEFAULT_SESSION_CONFIG",
    "DEFAULT_CANDIDATES",
    "DEFAULT_FALLBACK_URL",
    "calculate_backoff_delay",
    "credentials_from_env",
    "resolve_override_url",
    "merge_config",
    "validate_config",
    # Settings
    "BackendSettings",
    "SettingsError",
    "load_session_config",
    # Components
    "EndpointProber",
    "select_endpoint",
    "AuthStore",
    "ConnectionHandle",
    "ConnectionManager",
    "AuthCoordinator",
    "HealthChecker",
    # Session
    "BackendSession",
    "get_backend_session",
    "reset_backend_session",
]


__version__ = "1.0.0"
