"""
Health check against the currently selected endpoint.

Purely observational: never builds, replaces, or touches the connection
handle or the auth session. Rate limiting is up to the caller.
"""
import logging

from .connection import ConnectionManager
from .prober import EndpointProber
from .types import ConnectionCheckResult, EndpointCandidate

logger = logging.getLogger("backend_session.health")


class HealthChecker:
    """Probes the selected endpoint's health path."""

    def __init__(self, connections: ConnectionManager, prober: EndpointProber) -> None:
        self._connections = connections
        self._prober = prober

    async def check_connection(self) -> ConnectionCheckResult:
        """Run a single probe against the selected endpoint."""
        handle = self._connections.handle
        if handle is None:
            logger.debug("HealthChecker.check_connection: no endpoint selected yet")
            return ConnectionCheckResult(
                connected=False,
                url=None,
                error="No endpoint selected",
            )

        candidate = self._connections.selected or EndpointCandidate(url=handle.base_url)
        result = await self._prober.probe_one(candidate)

        if result.success:
            logger.debug(
                f"HealthChecker.check_connection: {handle.base_url} connected "
                f"status={result.status_code} latency={result.latency_ms}ms"
            )
            return ConnectionCheckResult(
                connected=True,
                url=handle.base_url,
                status_code=result.status_code,
                latency_ms=result.latency_ms,
            )

        logger.warning(f"HealthChecker.check_connection: {handle.base_url} unreachable - {result.error}")
        return ConnectionCheckResult(
            connected=False,
            url=handle.base_url,
            error=str(result.error),
            latency_ms=result.latency_ms,
        )
