"""Tests for provider session management.

Covers the cookie -> crumb state machine, single-flight re-authentication,
bounded retries, the cross-call backoff window, and generation-checked
invalidation. The provider is an in-process fake behind httpx.MockTransport.
"""

import asyncio
from collections.abc import Callable

import httpx
import pytest

from config.settings import GlobalConfig
from tests.fakes import COOKIE_URL, CRUMB_URL, FakeProvider
from tickerpulse.exceptions import AuthError
from tickerpulse.session import SessionManager, SessionState


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _no_sleep(seconds: float) -> None:
    return None


class TestSessionLifecycle:
    """Test suite for the happy path."""

    @pytest.mark.asyncio
    async def test_ensure_session_reaches_ready(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify cookies then crumb are fetched and the session is READY."""
        provider = provider_factory()
        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            assert sessions.state is SessionState.UNAUTHENTICATED
            assert sessions.session is None

            session = await sessions.ensure_session()

            assert sessions.state is SessionState.READY
            assert session.crumb == "mock_crumb"
            assert session.generation == 1
            assert http.cookies.get("A1") == "mock_a1_cookie"
            assert sessions.session is session

        assert provider.count(COOKIE_URL) == 1
        assert provider.count(CRUMB_URL) == 1

    @pytest.mark.asyncio
    async def test_ready_session_is_reused_without_traffic(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            first = await sessions.ensure_session()
            second = await sessions.ensure_session()

        assert first is second
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_user_agent_is_sent(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        async with http_factory(provider) as http:
            await SessionManager(http, mock_config).ensure_session()

        for request in provider.requests:
            assert request.headers["User-Agent"] == mock_config.user_agent

    @pytest.mark.asyncio
    async def test_crumb_request_carries_cookie(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        async with http_factory(provider) as http:
            await SessionManager(http, mock_config).ensure_session()

        crumb_request = provider.requests[1]
        assert "A1=mock_a1_cookie" in crumb_request.headers.get("Cookie", "")


class TestSingleFlight:
    """Test suite for concurrent callers."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_authentication(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify N concurrent callers trigger exactly one cookie and crumb fetch."""
        provider = provider_factory()
        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            results = await asyncio.gather(*(sessions.ensure_session() for _ in range(10)))

        assert all(result is results[0] for result in results)
        assert provider.count(COOKIE_URL) == 1
        assert provider.count(CRUMB_URL) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_failure(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify waiters observe the backoff window instead of retrying."""
        provider = provider_factory()
        provider.cookie_status = 503
        clock = FakeClock()
        config = mock_config.model_copy(
            update={"retry_base_delay_sec": 5.0, "retry_max_delay_sec": 60.0}
        )

        async with http_factory(provider) as http:
            sessions = SessionManager(http, config, clock=clock, sleep=_no_sleep)
            results = await asyncio.gather(
                *(sessions.ensure_session() for _ in range(5)), return_exceptions=True
            )

        assert all(isinstance(result, AuthError) for result in results)
        assert provider.count(COOKIE_URL) == config.auth_max_attempts


class TestAuthenticationFailures:
    """Test suite for cookie and crumb failures."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403, 500, 503])
    async def test_cookie_page_error_status(
        self,
        status: int,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        provider.cookie_status = status

        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            with pytest.raises(AuthError) as exc_info:
                await sessions.ensure_session()

        assert exc_info.value.status_code == status
        assert sessions.state is SessionState.UNAUTHENTICATED
        assert provider.count(COOKIE_URL) == mock_config.auth_max_attempts
        assert provider.count(CRUMB_URL) == 0

    @pytest.mark.asyncio
    async def test_missing_cookie_is_an_auth_failure(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        provider.set_cookie = False

        async with http_factory(provider) as http:
            with pytest.raises(AuthError) as exc_info:
                await SessionManager(http, mock_config).ensure_session()

        assert "cookie" in exc_info.value.reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        ["", "   ", "<html>Too Many Requests</html>", "x" * 65],
    )
    async def test_unusable_crumb_body(
        self,
        body: str,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify empty, HTML, or oversized crumb bodies are rejected."""
        provider = provider_factory()
        provider.crumb_body = body

        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            with pytest.raises(AuthError):
                await sessions.ensure_session()

        assert sessions.session is None
        # Cookies stay valid between attempts, only the crumb step repeats.
        assert provider.count(COOKIE_URL) == 1
        assert provider.count(CRUMB_URL) == mock_config.auth_max_attempts

    @pytest.mark.asyncio
    async def test_crumb_401_restarts_from_cookie_step(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        provider.crumb_status = 401

        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            with pytest.raises(AuthError):
                await sessions.ensure_session()

        assert provider.count(COOKIE_URL) == mock_config.auth_max_attempts
        assert provider.count(CRUMB_URL) == mock_config.auth_max_attempts
        assert sessions.state is SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_transport_error_becomes_auth_error(
        self,
        mock_config: GlobalConfig,
        http_factory: Callable,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with http_factory(handler) as http:
            with pytest.raises(AuthError) as exc_info:
                await SessionManager(http, mock_config).ensure_session()

        assert "connection refused" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_timeout_becomes_auth_error(
        self,
        mock_config: GlobalConfig,
        http_factory: Callable,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with http_factory(handler) as http:
            with pytest.raises(AuthError) as exc_info:
                await SessionManager(http, mock_config).ensure_session()

        assert "timeout" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_retry_recovers_from_transient_failure(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify a failure on the first attempt is retried within the same call."""
        provider = provider_factory()
        statuses = iter([503, 200])
        original = provider.__call__

        def flaky(request: httpx.Request) -> httpx.Response:
            if str(request.url).startswith(CRUMB_URL):
                provider.crumb_status = next(statuses)
            return original(request)

        async with http_factory(flaky) as http:
            session = await SessionManager(http, mock_config).ensure_session()

        assert session.crumb == "mock_crumb"
        assert provider.count(CRUMB_URL) == 2


class TestBackoffWindow:
    """Test suite for the cross-call cooldown after exhausted attempts."""

    @pytest.mark.asyncio
    async def test_calls_inside_window_fail_without_traffic(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        provider.cookie_status = 503
        clock = FakeClock()
        config = mock_config.model_copy(
            update={"retry_base_delay_sec": 2.0, "retry_max_delay_sec": 60.0}
        )

        async with http_factory(provider) as http:
            sessions = SessionManager(http, config, clock=clock, sleep=_no_sleep)

            with pytest.raises(AuthError):
                await sessions.ensure_session()
            sent = len(provider.requests)
            assert sessions.retry_after == pytest.approx(clock.now + 2.0)

            clock.now += 1.0
            with pytest.raises(AuthError) as exc_info:
                await sessions.ensure_session()
            assert "backing off" in exc_info.value.reason
            assert len(provider.requests) == sent

            provider.cookie_status = 200
            clock.now += 1.5
            session = await sessions.ensure_session()

        assert session.crumb == "mock_crumb"
        assert sessions.retry_after == 0.0

    @pytest.mark.asyncio
    async def test_window_grows_exponentially_and_is_capped(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        provider.cookie_status = 503
        clock = FakeClock()
        config = mock_config.model_copy(
            update={
                "retry_base_delay_sec": 1.0,
                "retry_max_delay_sec": 3.0,
                "auth_max_attempts": 1,
            }
        )

        delays = []
        async with http_factory(provider) as http:
            sessions = SessionManager(http, config, clock=clock, sleep=_no_sleep)
            for _ in range(4):
                with pytest.raises(AuthError):
                    await sessions.ensure_session()
                delays.append(sessions.retry_after - clock.now)
                clock.now = sessions.retry_after + 0.01

        assert delays == pytest.approx([1.0, 2.0, 3.0, 3.0])


class TestInvalidation:
    """Test suite for generation-checked invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_forces_full_reauthentication(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        provider = provider_factory()
        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            first = await sessions.ensure_session()

            assert sessions.invalidate(first.generation) is True
            assert sessions.state is SessionState.UNAUTHENTICATED
            assert len(http.cookies) == 0

            second = await sessions.ensure_session()

        assert second.generation == first.generation + 1
        assert provider.count(COOKIE_URL) == 2
        assert provider.count(CRUMB_URL) == 2

    @pytest.mark.asyncio
    async def test_stale_generation_is_ignored(
        self,
        mock_config: GlobalConfig,
        provider_factory: Callable[..., FakeProvider],
        http_factory: Callable,
    ) -> None:
        """Verify a late 401 for a replaced session does not drop the new one."""
        provider = provider_factory()
        async with http_factory(provider) as http:
            sessions = SessionManager(http, mock_config)
            first = await sessions.ensure_session()
            sessions.invalidate(first.generation)
            second = await sessions.ensure_session()

            assert sessions.invalidate(first.generation) is False
            assert sessions.state is SessionState.READY
            assert sessions.session is second

    @pytest.mark.asyncio
    async def test_invalidate_when_not_ready_is_ignored(
        self,
        mock_config: GlobalConfig,
        http_factory: Callable,
        provider_factory: Callable[..., FakeProvider],
    ) -> None:
        async with http_factory(provider_factory()) as http:
            sessions = SessionManager(http, mock_config)
            assert sessions.invalidate(0) is False
            assert sessions.state is SessionState.UNAUTHENTICATED
