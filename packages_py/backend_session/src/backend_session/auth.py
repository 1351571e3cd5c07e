"""
Authentication coordinator.

Guarantees at most one authentication round-trip in flight. Callers that
arrive while an attempt runs attach to its future instead of starting their
own; the AuthLock closes the window between "no attempt yet" and "attempt
exists". Failed attempts are retried with linear backoff on the same
attempt object, so attached callers stay attached until it settles.

State machine:

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
                       AUTHENTICATING -> FAILED  (attempt bound reached)
    FAILED          -> AUTHENTICATING            (next authenticate() call)
"""
import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Optional, Set

from .config import Credentials, SessionConfig, calculate_backoff_delay
from .errors import (
    AuthError,
    AuthenticationFailedError,
    AuthenticationRejectedError,
    AuthSessionResetError,
    LockTimeoutError,
    MissingCredentialsError,
)
from .handle import ConnectionHandle
from .types import (
    AuthResult,
    AuthSession,
    AuthState,
    InFlightAuthAttempt,
    SessionEvent,
    SessionEventListener,
)

logger = logging.getLogger("backend_session.auth")

ConnectionProvider = Callable[[], Awaitable[ConnectionHandle]]


class AuthCoordinator:
    """Single-flight authentication with locking and bounded retry."""

    def __init__(self, config: SessionConfig, connection_provider: ConnectionProvider) -> None:
        self._config = config
        self._get_connection = connection_provider
        self._session = AuthSession()
        self._in_flight: Optional[InFlightAuthAttempt] = None
        self._last_attempt: Optional[InFlightAuthAttempt] = None
        self._lock = asyncio.Lock()
        self._generation = 0
        self._listeners: Set[SessionEventListener] = set()

    @property
    def session(self) -> AuthSession:
        """Snapshot of the current session."""
        return replace(self._session)

    @property
    def state(self) -> AuthState:
        return self._session.state

    @property
    def in_flight(self) -> Optional[InFlightAuthAttempt]:
        return self._in_flight

    @property
    def generation(self) -> int:
        """Incremented by every reset()."""
        return self._generation

    async def authenticate(self, credentials: Optional[Credentials] = None) -> AuthResult:
        """
        Ensure the current connection is authenticated.

        Args:
            credentials: Overrides the configured credentials

        Returns:
            AuthResult shared by every caller attached to the same attempt

        Raises:
            AuthenticationFailedError: attempt bound reached (terminal)
            LockTimeoutError: auth lock not acquired in time (retryable)
            MissingCredentialsError: nothing to authenticate with
            AuthSessionResetError: a reinitialize discarded the attempt
        """
        creds = credentials or self._config.credentials
        if creds is None:
            raise MissingCredentialsError("No credentials configured for authentication")

        handle = await self._get_connection()

        cached = self._fast_path(handle)
        if cached is not None:
            return cached

        existing = self._in_flight
        if existing is not None:
            return await self._join(existing)

        lock = self._lock
        generation = self._generation
        previous = self._last_attempt
        await self._acquire(lock, handle)

        attempt: Optional[InFlightAuthAttempt] = None
        settled: Optional[InFlightAuthAttempt] = None
        restart = False
        try:
            if generation != self._generation:
                # reset() ran while we waited; the handle we hold is stale
                restart = True
            elif self._last_attempt is not previous and self._last_attempt is not None:
                # An attempt ran to completion while we queued for the lock
                settled = self._last_attempt
            else:
                cached = self._fast_path(handle)
                if cached is not None:
                    return cached

                attempt = InFlightAuthAttempt(
                    future=asyncio.get_running_loop().create_future(),
                    generation=self._generation,
                )
                self._in_flight = attempt
                self._last_attempt = attempt
                self._session.state = AuthState.AUTHENTICATING
                self._session.attempt_count = 0
                self._emit(SessionEvent(type="auth:start", data={"url": handle.base_url}))

                await self._run(attempt, handle, creds)
        finally:
            if attempt is not None:
                if not attempt.future.done():
                    self._abandon(attempt, handle)
                if self._in_flight is attempt:
                    self._in_flight = None
            lock.release()

        if restart:
            logger.info("AuthCoordinator.authenticate: session was reset while waiting, retrying on new connection")
            return await self.authenticate(credentials)

        if settled is not None:
            return await self._join(settled)

        return await attempt.future

    def _fast_path(self, handle: ConnectionHandle) -> Optional[AuthResult]:
        if self._session.state is not AuthState.AUTHENTICATED:
            return None
        if handle.auth_store.is_valid:
            return AuthResult(
                authenticated=True,
                url=handle.base_url,
                attempts=self._session.attempt_count,
                cached=True,
            )
        logger.info("AuthCoordinator._fast_path: stored token is no longer valid, re-authenticating")
        self._session.state = AuthState.UNAUTHENTICATED
        return None

    async def _acquire(self, lock: asyncio.Lock, handle: ConnectionHandle) -> None:
        """Acquire the auth lock, waiting at most lock_timeout_seconds."""
        timeout = self._config.lock_timeout_seconds
        if lock.locked():
            logger.debug(f"AuthCoordinator._acquire: lock busy, waiting up to {timeout}s")
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"AuthCoordinator._acquire: gave up on auth lock after {timeout}s")
            raise LockTimeoutError(timeout, url=handle.base_url) from e

    async def _join(self, attempt: InFlightAuthAttempt) -> AuthResult:
        attempt.subscribers += 1
        logger.debug(f"AuthCoordinator._join: attached to in-flight attempt (subscribers={attempt.subscribers})")
        self._emit(SessionEvent(type="auth:join", data={"subscribers": attempt.subscribers}))
        # shield: a cancelled follower must not cancel the shared attempt
        return await asyncio.shield(attempt.future)

    def _superseded(self, attempt: InFlightAuthAttempt) -> bool:
        return attempt.generation != self._generation

    async def _run(
        self,
        attempt: InFlightAuthAttempt,
        handle: ConnectionHandle,
        credentials: Credentials,
    ) -> None:
        """Run the network call until success or the attempt bound."""
        max_attempts = self._config.max_auth_attempts
        backoff = self._config.backoff or calculate_backoff_delay
        number = 0

        while True:
            number += 1
            self._session.attempt_count = number
            logger.info(
                f"AuthCoordinator._run: attempt {number}/{max_attempts} against {handle.base_url} "
                f"as {credentials.identity}"
            )

            try:
                await handle.auth_with_password(credentials)
                if not handle.auth_store.is_valid:
                    raise AuthenticationRejectedError(
                        "Auth response yielded an unusable session", url=handle.base_url
                    )
            except AuthError as e:
                if e.attempt is None:
                    e.attempt = number
                if self._superseded(attempt):
                    return
                self._emit(SessionEvent(
                    type="auth:fail", data={"attempt": number, "error": str(e), "url": handle.base_url}
                ))

                if number >= max_attempts:
                    terminal = AuthenticationFailedError(handle.base_url, number, cause=e)
                    logger.error(f"AuthCoordinator._run: {terminal}")
                    self._session.state = AuthState.FAILED
                    self._emit(SessionEvent(type="auth:exhausted", data={"attempts": number}))
                    self._settle(attempt, error=terminal)
                    return

                delay = backoff(number, self._config)
                logger.warning(
                    f"AuthCoordinator._run: attempt {number} failed ({e}), retrying in {delay}s"
                )
                self._emit(SessionEvent(type="auth:retry", data={"attempt": number, "delay_seconds": delay}))
                await self._config.sleep(delay)
                if self._superseded(attempt):
                    return
                continue
            except Exception as e:
                logger.exception(f"AuthCoordinator._run: unexpected error on attempt {number}: {e}")
                if not self._superseded(attempt):
                    self._session.state = AuthState.FAILED
                    self._settle(attempt, error=e)
                return

            if self._superseded(attempt):
                return
            self._session.state = AuthState.AUTHENTICATED
            logger.info(f"AuthCoordinator._run: authenticated against {handle.base_url} after {number} attempt(s)")
            self._emit(SessionEvent(type="auth:success", data={"attempts": number, "url": handle.base_url}))
            self._settle(attempt, result=AuthResult(authenticated=True, url=handle.base_url, attempts=number))
            return

    def _settle(
        self,
        attempt: InFlightAuthAttempt,
        result: Optional[AuthResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if attempt.future.done():
            return
        if error is not None:
            attempt.future.set_exception(error)
        else:
            attempt.future.set_result(result)

    def _abandon(self, attempt: InFlightAuthAttempt, handle: ConnectionHandle) -> None:
        """Settle an attempt whose leader exited without settling (cancellation)."""
        error = AuthError("Authentication attempt was abandoned", url=handle.base_url)
        if not self._superseded(attempt):
            self._session.state = AuthState.FAILED
        attempt.future.set_exception(error)
        # Followers may all have been cancelled; mark retrieved either way
        attempt.future.exception()

    def reset(self) -> None:
        """
        Discard the session, the in-flight attempt, and the lock.

        Synchronous, so it can be combined with the connection reset
        without a suspension point in between. A superseded leader keeps
        running against its old handle but never writes to the new session.
        """
        self._generation += 1
        old = self._in_flight
        self._in_flight = None
        self._last_attempt = None
        self._session = AuthSession()
        self._lock = asyncio.Lock()
        if old is not None and not old.future.done():
            old.future.set_exception(
                AuthSessionResetError("Authentication attempt discarded by reinitialize")
            )
        logger.debug(f"AuthCoordinator.reset: generation={self._generation}")
        self._emit(SessionEvent(type="auth:reset", data={"generation": self._generation}))

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
                logger.debug(f"AuthCoordinator._emit: listener failed for {event.type}", exc_info=True)
