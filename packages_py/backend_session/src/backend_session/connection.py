"""
Connection singleton: one memoized handle per manager.
"""
import asyncio
import logging
from typing import Callable, Optional, Set

from .config import SessionConfig
from .errors import NoReachableEndpointError
from .handle import ConnectionHandle
from .prober import EndpointProber
from .selector import select_endpoint
from .types import EndpointCandidate, SessionEvent, SessionEventListener

logger = logging.getLogger("backend_session.connection")

HandleFactory = Callable[[str, SessionConfig], ConnectionHandle]


def default_handle_factory(base_url: str, config: SessionConfig) -> ConnectionHandle:
    """Build a ConnectionHandle with its own httpx client."""
    return ConnectionHandle(
        base_url,
        timeout_seconds=config.request_timeout_seconds,
        auth_path=config.auth_path,
    )


class ConnectionManager:
    """
    Lazily builds and memoizes the process's connection handle.

    Construction is serialized by a creation lock so concurrent first
    callers share one probe round and one handle. Every detach() bumps an
    epoch; a probe round that started under an older epoch is not installed.
    """

    def __init__(
        self,
        config: SessionConfig,
        prober: EndpointProber,
        handle_factory: Optional[HandleFactory] = None,
    ) -> None:
        self._config = config
        self._prober = prober
        self._handle_factory = handle_factory or default_handle_factory
        self._handle: Optional[ConnectionHandle] = None
        self._selected: Optional[EndpointCandidate] = None
        self._creation_lock = asyncio.Lock()
        self._epoch = 0
        self._listeners: Set[SessionEventListener] = set()

    @property
    def handle(self) -> Optional[ConnectionHandle]:
        """The memoized handle, or None. Never triggers construction."""
        return self._handle

    @property
    def selected(self) -> Optional[EndpointCandidate]:
        """Candidate the current handle was built for."""
        return self._selected

    @property
    def prober(self) -> EndpointProber:
        return self._prober

    async def get_connection(self) -> ConnectionHandle:
        """
        Return the memoized handle, building it on first demand.

        Raises:
            NoReachableEndpointError: nothing answered and no fallback is enabled
        """
        handle = self._handle
        if handle is not None:
            return handle

        async with self._creation_lock:
            while True:
                if self._handle is not None:
                    return self._handle

                epoch = self._epoch
                candidate = await self._resolve_endpoint()

                if epoch != self._epoch:
                    # detach() ran during the probe round; its result predates the reset
                    logger.info(
                        f"ConnectionManager.get_connection: discarding {candidate.url} selected "
                        f"before a reset, probing again"
                    )
                    self._emit(SessionEvent(type="connection:discarded", data={"url": candidate.url}))
                    continue

                created = self._handle_factory(candidate.url, self._config)
                self._handle = created
                self._selected = candidate
                logger.info(f"ConnectionManager.get_connection: connection created for {created.base_url}")
                self._emit(SessionEvent(
                    type="connection:created",
                    data={"url": created.base_url, "classification": candidate.classification.value},
                ))
                return created

    async def _resolve_endpoint(self) -> EndpointCandidate:
        """Override URL, else probe + select, else fallback if enabled."""
        if self._config.override_url:
            logger.info(
                f"ConnectionManager._resolve_endpoint: override {self._config.override_url} set, skipping probes"
            )
            return EndpointCandidate(url=self._config.override_url, name="override")

        results = await self._prober.probe(self._config.candidates)
        self._emit(SessionEvent(
            type="probe:complete",
            data={
                "results": [
                    {"url": r.candidate.url, "success": r.success, "latency_ms": r.latency_ms}
                    for r in results
                ],
            },
        ))

        try:
            return select_endpoint(results)
        except NoReachableEndpointError as e:
            if not self._config.use_fallback_url:
                logger.error(f"ConnectionManager._resolve_endpoint: {e}")
                raise
            logger.warning(
                f"ConnectionManager._resolve_endpoint: {e}; using fallback {self._config.fallback_url}"
            )
            return EndpointCandidate(url=self._config.fallback_url, name="fallback")

    def detach(self) -> Optional[ConnectionHandle]:
        """
        Forget the memoized handle and return it without closing it.

        Synchronous so callers can combine it with other resets without a
        suspension point in between. A probe round already running when
        this is called has its result discarded.
        """
        self._epoch += 1
        handle = self._handle
        self._handle = None
        self._selected = None
        if handle is not None:
            self._emit(SessionEvent(type="connection:reset", data={"url": handle.base_url}))
        return handle

    async def aclose(self) -> None:
        """Close the handle and the prober."""
        old = self.detach()
        if old is not None:
            await old.aclose()
        await self._prober.aclose()

    def on(self, listener: SessionEventListener) -> Callable[[], None]:
        """Add event listener."""
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def off(self, listener: SessionEventListener) -> None:
        """Remove event listener."""
        self._listeners.discard(listener)

    def _emit(self, event: SessionEvent) -> None:
        """Emit an event to all listeners."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.debug(f"ConnectionManager._emit: listener failed for {event.type}", exc_info=True)
