"""Provider session management (cookies + crumb).

The quote endpoint only answers requests that carry the session cookies set
by the provider's HTML front page together with a short-lived "crumb" token
obtained with those cookies. SessionManager walks the state machine

    UNAUTHENTICATED -> COOKIE_OBTAINED -> CRUMB_OBTAINED -> READY

and drops back to UNAUTHENTICATED whenever a step fails or a client reports
a 401/403. Re-authentication is single-flight: concurrent callers of
:meth:`SessionManager.ensure_session` wait on one lock and reuse the outcome.

The HTTP client is injected so tests can swap in ``httpx.MockTransport``;
its cookie jar is the session's jar and only this module populates or
clears it.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import GlobalConfig, get_config
from tickerpulse.exceptions import AuthError
from tickerpulse.logger import get_logger

log = get_logger(__name__)

MAX_CRUMB_LENGTH = 64


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    COOKIE_OBTAINED = "cookie_obtained"
    CRUMB_OBTAINED = "crumb_obtained"
    READY = "ready"


@dataclass(frozen=True)
class Session:
    """An authenticated provider session, borrowed by clients per request.

    Attributes:
        crumb: Anti-automation token sent as the ``crumb`` query parameter.
        generation: Increments on every successful authentication; clients
            pass it back to :meth:`SessionManager.invalidate`.
    """

    crumb: str
    generation: int


class SessionManager:
    """Obtains and refreshes the cookie + crumb pair needed by the provider.

    Attributes:
        config: GlobalConfig with endpoint and backoff settings.
        http: Injected async HTTP client whose cookie jar holds the session.

    Example:
        async with httpx.AsyncClient() as http:
            sessions = SessionManager(http)
            session = await sessions.ensure_session()
            print(session.crumb)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: GlobalConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the manager in the UNAUTHENTICATED state.

        Args:
            http: Async HTTP client used for every provider call.
            config: Optional GlobalConfig. Uses singleton if not provided.
            clock: Monotonic clock used for the backoff window.
            sleep: Coroutine used between authentication attempts.
        """
        self.config = config or get_config()
        self.http = http
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state = SessionState.UNAUTHENTICATED
        self._session: Session | None = None
        self._generation = 0
        self._consecutive_failures = 0
        self._retry_after = 0.0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        """The current session, or None unless READY."""
        return self._session if self._state is SessionState.READY else None

    @property
    def retry_after(self) -> float:
        """Clock value before which no authentication traffic is sent."""
        return self._retry_after

    @property
    def request_headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent}

    @property
    def timeout(self) -> float:
        return self.config.request_timeout_ms / 1000

    async def ensure_session(self) -> Session:
        """Return a READY session, authenticating first if needed.

        Idempotent: a READY session is returned without network traffic.
        Otherwise the missing steps run in order, with up to
        ``auth_max_attempts`` attempts and exponential backoff in between.

        Returns:
            The READY session.

        Raises:
            AuthError: If authentication fails after all attempts, or the
                backoff window from an earlier failure is still open.
        """
        if self._state is SessionState.READY and self._session is not None:
            return self._session

        async with self._lock:
            # Another caller may have finished while we waited.
            if self._state is SessionState.READY and self._session is not None:
                return self._session

            remaining = self._retry_after - self._clock()
            if remaining > 0:
                raise AuthError(reason=f"backing off for another {remaining:.1f}s")

            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.config.auth_max_attempts),
                    wait=wait_exponential(
                        multiplier=self.config.retry_base_delay_sec,
                        max=self.config.retry_max_delay_sec,
                    ),
                    retry=retry_if_exception_type(AuthError),
                    before_sleep=self._log_retry,
                    sleep=self._sleep,
                    reraise=True,
                ):
                    with attempt:
                        await self._authenticate()

            except AuthError as exc:
                self._record_failure()
                log.warning(
                    "Provider authentication failed",
                    reason=exc.reason,
                    attempts=self.config.auth_max_attempts,
                    consecutive_failures=self._consecutive_failures,
                    backoff_sec=round(self._retry_after - self._clock(), 3),
                )
                raise

            self._consecutive_failures = 0
            self._retry_after = 0.0
            log.info("Provider session ready", generation=self._generation)
            return self._session

    def invalidate(self, generation: int | None = None) -> bool:
        """Drop the current session after an auth-class failure.

        Args:
            generation: Generation of the session that was rejected. A stale
                generation (already replaced or already dropped) is ignored.

        Returns:
            True if the session was dropped.
        """
        if generation is not None and (
            generation != self._generation or self._state is not SessionState.READY
        ):
            log.debug(
                "Ignoring stale session invalidation",
                generation=generation,
                current_generation=self._generation,
                state=self._state.value,
            )
            return False

        self._record_failure()
        log.info(
            "Provider session invalidated",
            generation=self._generation,
            backoff_sec=round(self._retry_after - self._clock(), 3),
        )
        return True

    async def _authenticate(self) -> None:
        if self._state is SessionState.UNAUTHENTICATED:
            await self._obtain_cookies()
            self._state = SessionState.COOKIE_OBTAINED

        crumb = await self._obtain_crumb()
        self._state = SessionState.CRUMB_OBTAINED

        self._generation += 1
        self._session = Session(
            crumb=crumb,
            generation=self._generation,
        )
        self._state = SessionState.READY

    async def _obtain_cookies(self) -> None:
        url = self.config.cookie_url
        self.http.cookies.clear()
        response = await self._get(url, follow_redirects=True)

        if response.status_code in (401, 403) or response.status_code >= 500:
            raise AuthError(
                reason=f"cookie page returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        if not self.http.cookies:
            raise AuthError(reason="no session cookie was set", url=url)

        log.debug("Session cookies obtained", cookies=list(self.http.cookies.keys()))

    async def _obtain_crumb(self) -> str:
        url = self.config.crumb_url
        response = await self._get(url)

        if response.status_code in (401, 403):
            # Cookies were rejected; start over from the cookie step.
            self._reset()
            raise AuthError(
                reason=f"crumb endpoint returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise AuthError(
                reason=f"crumb endpoint returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        crumb = response.text.strip()
        if not crumb or "<" in crumb or len(crumb) > MAX_CRUMB_LENGTH:
            raise AuthError(reason="crumb endpoint returned an unusable token", url=url)

        return crumb

    async def _get(self, url: str, follow_redirects: bool = False) -> httpx.Response:
        try:
            return await self.http.get(
                url,
                headers=self.request_headers,
                timeout=self.timeout,
                follow_redirects=follow_redirects,
            )
        except httpx.TimeoutException as exc:
            raise AuthError(
                reason=f"timeout after {self.config.request_timeout_ms}ms", url=url
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthError(reason=str(exc) or type(exc).__name__, url=url) from exc

    def _reset(self) -> None:
        self._state = SessionState.UNAUTHENTICATED
        self._session = None
        self.http.cookies.clear()

    def _record_failure(self) -> None:
        self._reset()
        self._consecutive_failures += 1
        delay = min(
            self.config.retry_base_delay_sec * 2 ** (self._consecutive_failures - 1),
            self.config.retry_max_delay_sec,
        )
        self._retry_after = self._clock() + delay

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.debug(
            "Retrying provider authentication",
            attempt=retry_state.attempt_number,
            state=self._state.value,
            error=str(getattr(exc, "reason", exc)),
        )
