"""
Shared fixtures for backend_session tests.
"""
import asyncio
import base64
import json
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Union

import httpx
import pytest

from backend_session.config import (
    DEFAULT_AUTH_PATH,
    DEFAULT_HEALTH_PATH,
    Credentials,
    SessionConfig,
)
from backend_session.types import EndpointCandidate, EndpointClass

DDNS_URL = "http://ddns.test:8090"
LAN_URL = "http://lan.test:8090"


def make_token(exp_offset: Optional[float] = 3600, claims: Optional[Dict[str, Any]] = None) -> str:
    """Build an unsigned JWT-shaped token."""
    payload: Dict[str, Any] = {"id": "admin1", "type": "admin"}
    if exp_offset is not None:
        payload["exp"] = int(time.time() + exp_offset)
    payload.update(claims or {})

    def encode(part: Dict[str, Any]) -> str:
        raw = json.dumps(part).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    return f"{encode({'alg': 'HS256', 'typ': 'JWT'})}.{encode(payload)}.signature"


class FakeBackend:
    """Scriptable backend served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.calls: Dict[tuple, int] = defaultdict(int)
        self.unreachable: Set[str] = set()
        self.probe_delays: Dict[str, float] = {}
        self.probe_status = 200
        self.auth_delay = 0.01
        self.auth_responses: List[Union[httpx.Response, Exception]] = []
        self.auth_bodies: List[Dict[str, Any]] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.path
        self.calls[(host, path)] += 1

        if host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if path == DEFAULT_HEALTH_PATH:
            delay = self.probe_delays.get(host, 0)
            if delay:
                await asyncio.sleep(delay)
            return httpx.Response(self.probe_status, json={"code": self.probe_status, "message": "API is healthy."})

        if path == DEFAULT_AUTH_PATH:
            self.auth_bodies.append(json.loads(request.content))
            await asyncio.sleep(self.auth_delay)
            if self.auth_responses:
                item = self.auth_responses.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
            return httpx.Response(200, json={"token": make_token(), "admin": {"id": "admin1"}})

        return httpx.Response(404, json={"message": "not found"})

    def auth_calls(self) -> int:
        return sum(n for (_, path), n in self.calls.items() if path == DEFAULT_AUTH_PATH)

    def probe_calls(self, host: Optional[str] = None) -> int:
        return sum(
            n for (h, path), n in self.calls.items()
            if path == DEFAULT_HEALTH_PATH and (host is None or h == host)
        )


class SleepRecorder:
    """Injected sleeper: records delays, yields once, never waits."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host environment out of config merging."""
    for key in ("BACKEND_URL", "BACKEND_ADMIN_EMAIL", "BACKEND_ADMIN_PASSWORD", "APP_ENV"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def candidates() -> List[EndpointCandidate]:
    return [
        EndpointCandidate(url=DDNS_URL, classification=EndpointClass.PRIMARY, name="ddns"),
        EndpointCandidate(url=LAN_URL, classification=EndpointClass.SECONDARY, name="lan"),
    ]


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(identity="admin@example.com", password="s3cret-password")


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def session_config(candidates, credentials, sleep_recorder) -> SessionConfig:
    return SessionConfig(
        candidates=candidates,
        credentials=credentials,
        probe_timeout_seconds=0.2,
        lock_timeout_seconds=0.2,
        sleep=sleep_recorder,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def mock_client(backend) -> httpx.AsyncClient:
    """httpx.AsyncClient wired to the fake backend."""
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
