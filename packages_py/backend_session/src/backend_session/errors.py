"""
Error types for backend_session.

Every error carries the fields a log line needs (url, attempt, cause)
instead of callers digging through arbitrary attributes.
"""
from typing import Dict, List, Optional


class BackendSessionError(Exception):
    """Base class for all backend_session errors."""

    def __init__(self, message: str, url: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.cause = cause


class ProbeError(BackendSessionError):
    """A single candidate could not be probed."""
    pass


class ProbeTimeoutError(ProbeError):
    """Probe exceeded its timeout."""
    pass


class ProbeNetworkError(ProbeError):
    """Probe failed with a network error (refused, DNS, reset...)."""
    pass


class NoReachableEndpointError(BackendSessionError):
    """No candidate endpoint answered its probe."""

    def __init__(self, urls: List[str], errors: Optional[Dict[str, str]] = None):
        joined = ", ".join(urls) if urls else "(no candidates)"
        super().__init__(f"No reachable endpoint among: {joined}")
        self.urls = list(urls)
        self.errors = dict(errors or {})


class AuthError(BackendSessionError):
    """Authentication failure."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        attempt: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, url=url, cause=cause)
        self.attempt = attempt


class AuthenticationRejectedError(AuthError):
    """Backend rejected the credentials or returned an unusable session."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        attempt: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, url=url, attempt=attempt, cause=cause)
        self.status_code = status_code


class AuthenticationTransportError(AuthError):
    """Network failure while talking to the auth endpoint."""
    pass


class AuthenticationFailedError(AuthError):
    """Terminal error after the attempt bound was reached."""

    def __init__(self, url: Optional[str], attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Authentication failed after {attempts} attempts: {cause}",
            url=url,
            attempt=attempts,
            cause=cause,
        )
        self.attempts = attempts


class AuthSessionResetError(AuthError):
    """The in-flight attempt was discarded by a reinitialization."""
    pass


class MissingCredentialsError(AuthError):
    """No credentials were configured or passed."""
    pass


class LockTimeoutError(BackendSessionError):
    """Waiting for the auth lock took longer than allowed. Safe to retry."""

    def __init__(self, timeout_seconds: float, url: Optional[str] = None):
        super().__init__(f"Timed out after {timeout_seconds}s waiting for auth lock", url=url)
        self.timeout_seconds = timeout_seconds
