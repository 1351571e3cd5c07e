"""
Connection handle bound to one resolved backend URL.

The handle carries connection-level state (the auth token store), so the
connection manager hands the same instance to every caller.
"""
import base64
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from .config import DEFAULT_AUTH_PATH, Credentials
from .errors import AuthenticationRejectedError, AuthenticationTransportError

logger = logging.getLogger("backend_session.handle")


def decode_token_payload(token: str) -> Dict[str, Any]:
    """Decode the payload segment of a JWT without verifying it."""
    try:
        segment = token.split(".")[1]
        padded = segment + "=" * (-len(segment) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()).decode("utf-8"))
    except (IndexError, ValueError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


class AuthStore:
    """Token store attached to a connection handle."""

    def __init__(self) -> None:
        self._token = ""
        self._record: Optional[Dict[str, Any]] = None

    @property
    def token(self) -> str:
        return self._token

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        return self._record

    @property
    def is_valid(self) -> bool:
        """
        True when the token decodes and has not expired.

        A payload without ``exp`` never expires; an undecodable or empty
        payload is never valid.
        """
        if not self._token:
            return False
        payload = decode_token_payload(self._token)
        if not payload:
            return False
        exp = payload.get("exp")
        if exp is None:
            return True
        try:
            return float(exp) > time.time()
        except (TypeError, ValueError):
            return False

    def save(self, token: str, record: Optional[Dict[str, Any]] = None) -> None:
        self._token = token or ""
        self._record = record

    def clear(self) -> None:
        self._token = ""
        self._record = None


class ConnectionHandle:
    """HTTP connection to the selected backend endpoint."""

    def __init__(
        self,
        base_url: str,
        httpx_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        auth_path: str = DEFAULT_AUTH_PATH,
    ):
        self._base_url = base_url.rstrip("/")
        self._auth_path = auth_path
        self._timeout = timeout_seconds
        self._owns_client = httpx_client is None
        self._client = httpx_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._auth_store = AuthStore()
        self._closed = False

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def auth_store(self) -> AuthStore:
        return self._auth_store

    @property
    def closed(self) -> bool:
        return self._closed

    def _url(self, path: str) -> str:
        return self._base_url + "/" + path.lstrip("/")

    async def auth_with_password(self, credentials: Credentials) -> Dict[str, Any]:
        """
        Authenticate against the privileged endpoint and store the token.

        Raises:
            AuthenticationTransportError: on network failure
            AuthenticationRejectedError: on an error status or a payload
                without a token
        """
        if self._closed:
            raise AuthenticationTransportError("Connection handle has been closed", url=self._base_url)

        url = self._url(self._auth_path)
        logger.debug(f"ConnectionHandle.auth_with_password: POST {url} identity={credentials.identity}")

        try:
            response = await self._client.post(
                url,
                json={"identity": credentials.identity, "password": credentials.password},
                timeout=self._timeout,
            )
        except httpx.TransportError as e:
            raise AuthenticationTransportError(
                f"Auth request to {url} failed: {e}", url=self._base_url, cause=e
            ) from e

        if response.status_code >= 400:
            raise AuthenticationRejectedError(
                f"Auth rejected with HTTP {response.status_code}: {response.reason_phrase}",
                url=self._base_url,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationRejectedError(
                "Auth response is not JSON", url=self._base_url, status_code=response.status_code, cause=e
            ) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            raise AuthenticationRejectedError(
                "Auth response has no token", url=self._base_url, status_code=response.status_code
            )

        record = data.get("admin") or data.get("record")
        self._auth_store.save(token, record if isinstance(record, dict) else None)
        return data

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request to the backend, adding the token when valid."""
        if self._closed:
            raise RuntimeError("Connection handle has been closed")

        headers = dict(kwargs.pop("headers", None) or {})
        if self._auth_store.is_valid:
            headers.setdefault("Authorization", self._auth_store.token)

        logger.debug(f"ConnectionHandle.request: {method} {self._url(path)}")
        return await self._client.request(method, self._url(path), headers=headers, **kwargs)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        """GET request."""
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        """POST request."""
        return await self.request("POST", path, **kwargs)

    async def aclose(self) -> None:
        """Close the handle. Only a client created here is closed."""
        if self._closed:
            return
        self._closed = True
        self._auth_store.clear()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ConnectionHandle":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"ConnectionHandle(base_url={self._base_url!r}, authenticated={self._auth_store.is_valid})"
