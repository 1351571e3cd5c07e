"""
Configuration for backend_session.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse

from .types import EndpointCandidate, EndpointClass

logger = logging.getLogger("backend_session.config")

# Environment variables
ENV_OVERRIDE_URL = "BACKEND_URL"
ENV_ADMIN_EMAIL = "BACKEND_ADMIN_EMAIL"
ENV_ADMIN_PASSWORD = "BACKEND_ADMIN_PASSWORD"

# Used when every candidate fails and the caller opted into a fallback
DEFAULT_FALLBACK_URL = "http://ddns.example:8090"

DEFAULT_CANDIDATES: List[EndpointCandidate] = [
    EndpointCandidate(url="http://ddns.example:8090", classification=EndpointClass.PRIMARY, name="ddns"),
    EndpointCandidate(url="http://192.168.0.59:8090", classification=EndpointClass.SECONDARY, name="lan"),
]

DEFAULT_HEALTH_PATH = "/api/health"
DEFAULT_AUTH_PATH = "/api/admins/auth-with-password"


def _mask_sensitive(value: Optional[str], visible_chars: int = 3) -> str:
    """Mask sensitive value for safe logging."""
    if value is None:
        return "<None>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


@dataclass(frozen=True)
class Credentials:
    """Fixed service credentials for the privileged auth endpoint."""

    identity: str
    password: str

    def __repr__(self) -> str:
        """Safe repr that masks the password."""
        return f"Credentials(identity={self.identity!r}, password={_mask_sensitive(self.password)!r})"


async def async_sleep(seconds: float) -> None:
    """
    Sleep for a specified duration (async).

    Args:
        seconds: Duration in seconds
    """
    await asyncio.sleep(seconds)


@dataclass
class SessionConfig:
    """Session configuration"""

    candidates: List[EndpointCandidate] = field(default_factory=lambda: list(DEFAULT_CANDIDATES))
    """Ordered candidate endpoints. Order breaks latency ties."""

    health_path: str = DEFAULT_HEALTH_PATH
    """Lightweight path probed on every candidate"""

    auth_path: str = DEFAULT_AUTH_PATH
    """Privileged authentication endpoint"""

    probe_timeout_seconds: float = 3.0
    """Per-probe timeout. Default: 3.0"""

    lock_timeout_seconds: float = 5.0
    """Bounded wait for the auth lock. Default: 5.0"""

    max_auth_attempts: int = 3
    """Authentication attempts before the terminal error. Default: 3"""

    retry_delay_seconds: float = 1.0
    """Fixed delay multiplied by the attempt number. Default: 1.0"""

    request_timeout_seconds: float = 30.0
    """Timeout for calls made through the connection handle"""

    override_url: Optional[str] = None
    """When set, probing is skipped and this URL is used directly"""

    fallback_url: str = DEFAULT_FALLBACK_URL
    """URL used when nothing is reachable and use_fallback_url is set"""

    use_fallback_url: bool = False
    """Apply fallback_url instead of raising NoReachableEndpointError"""

    credentials: Optional[Credentials] = None
    """Default credentials for authenticate()"""

    sleep: Callable[[float], Awaitable[None]] = async_sleep
    """Sleeper used between auth attempts. Injected in tests."""

    backoff: Optional[Callable[[int, "SessionConfig"], float]] = None
    """Custom backoff; defaults to calculate_backoff_delay"""


DEFAULT_SESSION_CONFIG = SessionConfig()


def calculate_backoff_delay(attempt: int, config: SessionConfig) -> float:
    """
    Linear backoff between auth attempts.

    Args:
        attempt: The attempt that just failed (1-indexed)
        config: Session configuration

    Returns:
        Delay in seconds (attempt * retry_delay_seconds)
    """
    return attempt * config.retry_delay_seconds


def resolve_override_url() -> Optional[str]:
    """Read the single-URL override from the environment."""
    value = os.environ.get(ENV_OVERRIDE_URL, "").strip()
    return value or None


def credentials_from_env() -> Optional[Credentials]:
    """Read service credentials from the environment."""
    identity = os.environ.get(ENV_ADMIN_EMAIL)
    password = os.environ.get(ENV_ADMIN_PASSWORD)
    if not identity or not password:
        logger.debug(
            f"credentials_from_env: credentials incomplete "
            f"(identity={'set' if identity else 'missing'}, password={'set' if password else 'missing'})"
        )
        return None
    return Credentials(identity=identity, password=password)


def merge_config(config: Optional[SessionConfig] = None) -> SessionConfig:
    """
    Merge configuration with defaults and the environment.

    Environment values only fill gaps; explicit config wins.

    Args:
        config: User-provided configuration

    Returns:
        Complete configuration
    """
    base = config if config is not None else replace(DEFAULT_SESSION_CONFIG, candidates=list(DEFAULT_CANDIDATES))
    updates = {}
    if base.override_url is None:
        override = resolve_override_url()
        if override:
            logger.info(f"merge_config: using {ENV_OVERRIDE_URL} override {override}")
            updates["override_url"] = override
    if base.credentials is None:
        env_credentials = credentials_from_env()
        if env_credentials is not None:
            updates["credentials"] = env_credentials
    return replace(base, **updates) if updates else base


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme in ("http", "https") and parsed.netloc)


def validate_config(config: SessionConfig) -> list[str]:
    """Validate configuration values"""
    errors = []

    if not config.candidates and not config.override_url:
        errors.append("at least one candidate or an override_url is required")

    for candidate in config.candidates:
        if not _is_valid_url(candidate.url):
            errors.append(f"invalid candidate url: {candidate.url}")

    if config.override_url and not _is_valid_url(config.override_url):
        errors.append(f"invalid override_url: {config.override_url}")

    if config.use_fallback_url and not _is_valid_url(config.fallback_url):
        errors.append(f"invalid fallback_url: {config.fallback_url}")

    if not config.health_path.startswith("/"):
        errors.append("health_path must start with '/'")

    if not config.auth_path.startswith("/"):
        errors.append("auth_path must start with '/'")

    if config.probe_timeout_seconds <= 0:
        errors.append("probe_timeout_seconds must be positive")

    if config.lock_timeout_seconds <= 0:
        errors.append("lock_timeout_seconds must be positive")

    if config.max_auth_attempts < 1:
        errors.append("max_auth_attempts must be at least 1")

    if config.retry_delay_seconds < 0:
        errors.append("retry_delay_seconds must be non-negative")

    return errors
