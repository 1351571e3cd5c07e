"""
Type definitions for backend_session.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Literal, Optional

if TYPE_CHECKING:
    from .errors import ProbeError


class EndpointClass(str, Enum):
    """Endpoint classification used by the selection policy"""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class AuthState(str, Enum):
    """Authentication session state"""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class EndpointCandidate:
    """A known network address where the backend may be reachable"""

    url: str
    """Base URL, e.g. http://192.168.0.59:8090"""

    classification: EndpointClass = EndpointClass.SECONDARY
    """Primary candidates win selection regardless of latency"""

    name: Optional[str] = None
    """Human readable label for logs"""

    @property
    def label(self) -> str:
        return self.name or self.url


@dataclass
class ProbeResult:
    """Outcome of one reachability probe"""

    candidate: EndpointCandidate
    success: bool
    latency_ms: Optional[float] = None
    status_code: Optional[int] = None
    error: Optional["ProbeError"] = None


@dataclass
class AuthSession:
    """Authentication state, owned by the auth coordinator"""

    state: AuthState = AuthState.UNAUTHENTICATED
    attempt_count: int = 0


@dataclass
class InFlightAuthAttempt:
    """Shared pending result of a running authentication call"""

    future: asyncio.Future
    """Resolves with an AuthResult or the terminal error"""

    generation: int
    """Coordinator generation the attempt belongs to"""

    started_at: float = field(default_factory=time.time)

    subscribers: int = 1
    """Number of callers attached, the leader included"""


@dataclass(frozen=True)
class AuthResult:
    """Outcome delivered to every caller of an authentication attempt"""

    authenticated: bool
    url: str
    attempts: int = 0
    cached: bool = False
    """True when served from the AUTHENTICATED fast path"""


@dataclass
class ConnectionCheckResult:
    """Result of a health check against the selected endpoint"""

    connected: bool
    url: Optional[str]
    error: Optional[str] = None
    status_code: Optional[int] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "connected": self.connected,
            "url": self.url,
            "error": self.error,
            "status_code": self.status_code,
            "latency_ms": self.latency_ms,
        }


@dataclass
class InitializeReport:
    """Result of BackendSession.initialize()"""

    success: bool
    url: Optional[str] = None
    classification: Optional[EndpointClass] = None
    health: Optional[ConnectionCheckResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "url": self.url,
            "classification": self.classification.value if self.classification else None,
            "health": self.health.to_dict() if self.health else None,
            "error": self.error,
        }


# Event types
SessionEventType = Literal[
    "probe:complete",
    "connection:created",
    "connection:discarded",
    "connection:reset",
    "auth:start",
    "auth:join",
    "auth:success",
    "auth:fail",
    "auth:retry",
    "auth:exhausted",
    "auth:reset",
]


@dataclass
class SessionEvent:
    """Event emitted by the connection manager and auth coordinator"""

    type: SessionEventType
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)


# Event listener type
SessionEventListener = Callable[[SessionEvent], None]
