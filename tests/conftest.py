"""Pytest configuration and shared fixtures for the TickerPulse test suite.

This module provides hermetic test infrastructure with the following guarantees:
- No external network requests (httpx.MockTransport stands in for the provider)
- Deterministic execution (no backoff sleeps, injectable clocks)
- Isolated state (no cross-test contamination of the config singleton)

Design Rationale:
    Factory fixtures over static fixtures enable dynamic test case generation
    without code duplication. The provider fake routes requests by URL the
    same way the real provider does: cookie page, crumb endpoint, quote
    endpoint.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from config.settings import GlobalConfig
from tests.fakes import COOKIE_URL, CRUMB_URL, QUOTE_URL, FakeProvider, json_quote_response


@pytest.fixture
def mock_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GlobalConfig:
    """Provide isolated GlobalConfig with safe test defaults.

    Overrides the lru_cache singleton to prevent state leakage between tests.
    Backoff delays are zero so retry paths run instantly.

    Example:
        def test_something(mock_config: GlobalConfig) -> None:
            assert mock_config.auth_max_attempts == 2
    """
    from config.settings import get_config

    get_config.cache_clear()

    log_dir = tmp_path / "logs"
    log_dir.mkdir()

    test_env = {
        "APP_NAME": "TickerPulse-Test",
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "LOG_LEVEL": "DEBUG",
        "LOG_DIR": str(log_dir),
        "LOG_ROTATION": "1 day",
        "LOG_RETENTION": "1 day",
        "COOKIE_URL": COOKIE_URL,
        "CRUMB_URL": CRUMB_URL,
        "QUOTE_URL": QUOTE_URL,
        "QUOTE_BATCH_SIZE": "100",
        "REQUEST_TIMEOUT_MS": "5000",
        "AUTH_MAX_ATTEMPTS": "2",
        "RETRY_BASE_DELAY_SEC": "0",
        "RETRY_MAX_DELAY_SEC": "0",
        "SHAPE_FAILURE_THRESHOLD": "0.30",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    config = get_config()

    yield config

    get_config.cache_clear()


@pytest.fixture
def quote_entry_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture for provider quote entries.

    Example:
        def test_x(quote_entry_factory):
            entry = quote_entry_factory("AAPL", regularMarketPrice=150.0)
    """

    def _entry(symbol: str | None = "AAPL", **overrides: Any) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "regularMarketPrice": 150.0,
            "regularMarketChange": 2.5,
            "regularMarketChangePercent": 1.6,
            "regularMarketOpen": 148.0,
            "regularMarketDayLow": 147.5,
            "regularMarketDayHigh": 151.0,
            "fiftyTwoWeekLow": 100.0,
            "fiftyTwoWeekHigh": 160.0,
            "regularMarketVolume": 50000000,
            "averageDailyVolume10Day": 45000000,
            "trailingPE": 25.0,
            "trailingAnnualDividendRate": 0.8,
            "trailingAnnualDividendYield": 0.005,
            "marketCap": 2500000000000,
            "currency": "USD",
        }
        if symbol is not None:
            entry["symbol"] = symbol
        entry.update(overrides)
        return entry

    return _entry


@pytest.fixture
def provider_factory() -> Callable[..., FakeProvider]:
    """Factory fixture building a FakeProvider.

    ``entries_for`` maps the requested symbol list to result entries; by
    default one minimal entry is echoed per requested symbol.
    """

    def _provider(
        entries_for: Callable[[list[str]], list[Any]] | None = None,
        quote_handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> FakeProvider:
        def default_handler(request: httpx.Request) -> httpx.Response:
            symbols = request.url.params["symbols"].split(",")
            if entries_for is not None:
                return json_quote_response(entries_for(symbols))
            return json_quote_response(
                [{"symbol": symbol, "regularMarketPrice": 10.0} for symbol in symbols]
            )

        return FakeProvider(quote_handler or default_handler)

    return _provider


@pytest.fixture
def http_factory() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory fixture wrapping a request handler in an httpx.AsyncClient."""

    def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _client


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests exercising several components together",
    )
