"""Settings for the refresh loop and the provider endpoints.

Every field can be overridden by an environment variable of the same name
(case-insensitive) or a line in `.env`. Values are validated once, at first
access through :func:`get_config`, so a bad setting stops the process before
the first request is sent.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GlobalConfig(BaseSettings):
    """Centralized configuration with environment variable binding.

    All configuration values are loaded from environment variables,
    with defaults pointing at the real Yahoo Finance endpoints. Tests and
    alternative deployments override them via .env or environment injection.

    Attributes:
        app_name: Application identifier for logging.
        environment: Deployment environment (development/staging/production/test).
        debug: Enable verbose debugging output.
        log_level: Minimum log level for output filtering.
        log_dir: Directory path for structured JSON log files.
        log_rotation: Log file rotation interval.
        log_retention: Log file retention period.
        cookie_url: Page fetched to obtain provider session cookies.
        crumb_url: Endpoint returning the anti-automation crumb token.
        quote_url: Batched quote endpoint used for stocks and indices.
        quote_batch_size: Maximum symbols per quote request.
        index_symbols: Ordered mapping of index name to provider symbol.
        request_timeout_ms: Network request timeout in milliseconds.
        auth_max_attempts: Authentication attempts before giving up.
        retry_base_delay_sec: Base delay for exponential backoff.
        retry_max_delay_sec: Maximum delay cap for backoff.
        shape_failure_threshold: Maximum malformed-entry ratio per batch.
        user_agent: User-Agent header sent with every provider request.
        tickers: Initial ticker list used by the bootstrap.
        filter_expression: Initial filter expression used by the bootstrap.
        sort_column: Column the bootstrap sorts by.
        sort_descending: Sort direction used by the bootstrap.
        refresh_interval_sec: Seconds between refresh ticks.
        max_cycles: Ticks to run before exiting (0 = run until interrupted).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Metadata
    app_name: str = Field(default="TickerPulse", description="Application identifier")
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log output directory")
    log_rotation: str = Field(default="1 week", description="Log rotation interval")
    log_retention: str = Field(default="1 month", description="Log retention period")

    # Provider Endpoints
    cookie_url: str = Field(
        default="https://finance.yahoo.com/",
        description="Page that sets provider session cookies",
    )
    crumb_url: str = Field(
        default="https://query1.finance.yahoo.com/v1/test/getcrumb",
        description="Crumb token endpoint",
    )
    quote_url: str = Field(
        default="https://query1.finance.yahoo.com/v7/finance/quote",
        description="Batched quote endpoint",
    )
    quote_batch_size: int = Field(
        default=100, ge=1, le=1500, description="Maximum symbols per quote request"
    )
    index_symbols: dict[str, str] = Field(
        default={
            "Dow": "^DJI",
            "Nasdaq": "^IXIC",
            "S&P 500": "^GSPC",
            "Tokyo": "^N225",
            "Hong Kong": "^HSI",
            "London": "^FTSE",
            "Frankfurt": "^GDAXI",
            "10-Year Yield": "^TNX",
            "Oil": "CL=F",
            "Yen": "JPY=X",
            "Euro": "EUR=X",
            "Gold": "GC=F",
        },
        description="Ordered index name to provider symbol mapping",
    )

    # Resilience Parameters
    request_timeout_ms: int = Field(
        default=10000, ge=500, le=120000, description="Request timeout in milliseconds"
    )
    auth_max_attempts: int = Field(
        default=3, ge=1, le=10, description="Authentication attempts per session refresh"
    )
    retry_base_delay_sec: float = Field(
        default=1.0, ge=0.0, le=10.0, description="Base delay for exponential backoff"
    )
    retry_max_delay_sec: float = Field(
        default=60.0, ge=0.0, le=300.0, description="Maximum backoff delay"
    )

    # Watchdog Configuration
    shape_failure_threshold: float = Field(
        default=0.30, ge=0.0, le=1.0, description="Malformed entry ratio threshold (0.30 = 30%)"
    )

    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent header for provider requests",
    )

    # Bootstrap Defaults
    tickers: list[str] = Field(
        default=["AAPL", "MSFT", "GOOG", "AMZN", "NVDA"],
        description="Ticker list used by the bootstrap",
    )
    filter_expression: str = Field(default="", description="Filter expression")
    sort_column: str = Field(default="ticker", description="Sort column name")
    sort_descending: bool = Field(default=False, description="Sort direction")
    refresh_interval_sec: float = Field(
        default=10.0, ge=1.0, le=3600.0, description="Seconds between refresh ticks"
    )
    max_cycles: int = Field(
        default=0, ge=0, description="Ticks to run before exiting (0 = unlimited)"
    )

    @field_validator("log_dir", mode="before")
    @classmethod
    def ensure_path(cls, value: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(value) if isinstance(value, str) else value

    @field_validator("cookie_url", "crumb_url", "quote_url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Reject endpoint values that are not http(s) URLs."""
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint must be an http(s) URL, got '{value}'")
        return value

    @field_validator("tickers")
    @classmethod
    def normalize_tickers(cls, value: list[str]) -> list[str]:
        """Upper-case tickers and drop blanks and duplicates, keeping order."""
        seen: dict[str, None] = {}
        for ticker in value:
            cleaned = ticker.strip().upper()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)


@lru_cache(maxsize=1)
def get_config() -> GlobalConfig:
    """Return the process-wide GlobalConfig, built on first call.

    Tests call ``get_config.cache_clear()`` after changing the environment.
    """
    return GlobalConfig()
