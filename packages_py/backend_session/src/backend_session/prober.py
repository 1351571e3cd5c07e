"""
Endpoint reachability probing.

Probes every candidate concurrently so a round costs as much as the
slowest single probe.
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

import httpx

from .config import DEFAULT_HEALTH_PATH
from .errors import ProbeError, ProbeNetworkError, ProbeTimeoutError
from .types import EndpointCandidate, ProbeResult

logger = logging.getLogger("backend_session.prober")


def build_probe_url(base_url: str, path: str) -> str:
    """Join a base URL and an absolute path."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")


class EndpointProber:
    """Issues bounded-timeout health probes against candidate endpoints."""

    def __init__(
        self,
        timeout_seconds: float = 3.0,
        health_path: str = DEFAULT_HEALTH_PATH,
        httpx_client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout_seconds
        self._health_path = health_path
        self._owns_client = httpx_client is None
        self._client = httpx_client or httpx.AsyncClient()
        self._probe_count = 0

    @property
    def probe_count(self) -> int:
        """Number of completed probe rounds."""
        return self._probe_count

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def _fetch_status(self, url: str) -> int:
        """GET the probe URL and return its status without reading the body."""
        async with self._client.stream("GET", url, timeout=self._timeout) as response:
            return response.status_code

    async def probe_one(self, candidate: EndpointCandidate) -> ProbeResult:
        """
        Probe a single candidate.

        Any HTTP response counts as success, whatever its status: the probe
        only confirms that the server process answers. The body is never
        read, so a malformed payload cannot turn an answer into a failure.
        """
        url = build_probe_url(candidate.url, self._health_path)
        start = time.perf_counter()
        error: ProbeError

        try:
            status_code = await asyncio.wait_for(self._fetch_status(url), timeout=self._timeout)
            latency_ms = (time.perf_counter() - start) * 1000
            logger.debug(
                f"EndpointProber.probe_one: {candidate.label} answered "
                f"status={status_code} latency={latency_ms:.1f}ms"
            )
            return ProbeResult(
                candidate=candidate,
                success=True,
                latency_ms=round(latency_ms, 2),
                status_code=status_code,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            error = ProbeTimeoutError(
                f"Probe timed out after {self._timeout}s: {url}", url=candidate.url, cause=e
            )
        except (httpx.HTTPError, OSError) as e:
            error = ProbeNetworkError(f"Probe failed for {url}: {e}", url=candidate.url, cause=e)

        latency_ms = (time.perf_counter() - start) * 1000
        logger.warning(f"EndpointProber.probe_one: {candidate.label} unreachable - {error}")
        return ProbeResult(
            candidate=candidate,
            success=False,
            latency_ms=round(latency_ms, 2),
            error=error,
        )

    async def probe(self, candidates: Sequence[EndpointCandidate]) -> List[ProbeResult]:
        """
        Probe all candidates in parallel.

        Args:
            candidates: Ordered candidate endpoints

        Returns:
            One ProbeResult per candidate, in candidate order
        """
        logger.debug(f"EndpointProber.probe: probing {len(candidates)} candidates")
        results = await asyncio.gather(*[self.probe_one(c) for c in candidates])
        self._probe_count += 1
        reachable = [r.candidate.label for r in results if r.success]
        logger.info(
            f"EndpointProber.probe: round {self._probe_count} complete, "
            f"reachable={reachable or 'none'}"
        )
        return list(results)

    async def aclose(self) -> None:
        """Close the underlying client if this prober created it."""
        if self._owns_client:
            await self._client.aclose()
