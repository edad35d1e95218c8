"""Raw payload validation and shape monitoring.

This module implements:
- RawQuote, a lenient pydantic schema for one ``quoteResponse.result`` entry
- ShapeMonitor (Watchdog) for detecting provider contract changes

Design Rationale:
    A quote provider without a published contract changes shape without
    notice. Individual bad fields are degraded locally so one odd value never
    costs a whole row, while the Watchdog fails the batch when too many
    entries are unusable. A failed batch keeps the previous snapshot on
    screen instead of replacing it with a half-empty one.
"""

import math
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from config.settings import GlobalConfig, get_config
from tickerpulse.exceptions import FieldParseError, ShapeMismatchError
from tickerpulse.logger import get_logger
from tickerpulse.numeric import parse_number_strict

log = get_logger(__name__)

NUMERIC_FIELDS = (
    "regular_market_price",
    "regular_market_change",
    "regular_market_change_percent",
    "regular_market_open",
    "regular_market_day_low",
    "regular_market_day_high",
    "fifty_two_week_low",
    "fifty_two_week_high",
    "regular_market_volume",
    "average_daily_volume_10_day",
    "trailing_pe",
    "trailing_annual_dividend_rate",
    "trailing_annual_dividend_yield",
    "market_cap",
)


class RawQuote(BaseModel):
    """Validated view of a single provider quote entry.

    Every field is optional: the provider omits fields that do not apply
    (no P/E for an index, no dividend for a growth stock). Numeric fields
    accept JSON numbers, numeric strings, and ``{"raw": ..., "fmt": ...}``
    objects; anything else degrades to ``None`` with a warning.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    symbol: str | None = None
    currency: str | None = None
    market_state: str | None = Field(default=None, alias="marketState")

    regular_market_price: float | None = Field(default=None, alias="regularMarketPrice")
    regular_market_change: float | None = Field(default=None, alias="regularMarketChange")
    regular_market_change_percent: float | None = Field(
        default=None, alias="regularMarketChangePercent"
    )
    regular_market_open: float | None = Field(default=None, alias="regularMarketOpen")
    regular_market_day_low: float | None = Field(default=None, alias="regularMarketDayLow")
    regular_market_day_high: float | None = Field(default=None, alias="regularMarketDayHigh")
    fifty_two_week_low: float | None = Field(default=None, alias="fiftyTwoWeekLow")
    fifty_two_week_high: float | None = Field(default=None, alias="fiftyTwoWeekHigh")
    regular_market_volume: float | None = Field(default=None, alias="regularMarketVolume")
    average_daily_volume_10_day: float | None = Field(
        default=None, alias="averageDailyVolume10Day"
    )
    trailing_pe: float | None = Field(default=None, alias="trailingPE")
    trailing_annual_dividend_rate: float | None = Field(
        default=None, alias="trailingAnnualDividendRate"
    )
    trailing_annual_dividend_yield: float | None = Field(
        default=None, alias="trailingAnnualDividendYield"
    )
    market_cap: float | None = Field(default=None, alias="marketCap")

    @field_validator("symbol", "currency", "market_state", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str | None:
        """Keep strings, drop anything else."""
        if isinstance(value, str):
            return value.strip() or None
        return None

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def coerce_number(cls, value: Any, info: ValidationInfo) -> float | None:
        """Convert a provider value to float, degrading bad input to None.

        Args:
            value: Raw JSON value.
            info: Pydantic validation info (used for the field name).

        Returns:
            Float value or None when missing or unparseable.
        """
        if value is None:
            return None

        if isinstance(value, dict) and "raw" in value:
            value = value["raw"]

        try:
            if isinstance(value, bool):
                raise FieldParseError(value, "boolean is not a number", info.field_name)
            if isinstance(value, (int, float)):
                try:
                    number = float(value)
                except OverflowError as exc:
                    raise FieldParseError(value, "out of range", info.field_name) from exc
            elif isinstance(value, str):
                number = parse_number_strict(value, info.field_name)
            else:
                raise FieldParseError(
                    value, f"unsupported type {type(value).__name__}", info.field_name
                )

            if not math.isfinite(number):
                raise FieldParseError(value, "non-finite number", info.field_name)
            return number

        except FieldParseError as exc:
            log.warning(
                "Quote field degraded",
                field=info.field_name,
                value=repr(value)[:50],
                reason=exc.message,
            )
            return None


@dataclass
class _Tally:
    attempts: int = 0
    successes: int = 0

    @property
    def failures(self) -> int:
        return self.attempts - self.successes

    @property
    def failure_ratio(self) -> float:
        return self.failures / self.attempts if self.attempts else 0.0


class ShapeMonitor:
    """Watchdog that fails a batch when too many entries are unusable.

    One monitor lives on each client. Counts are kept per batch (reset by
    :meth:`start_batch`) and for the lifetime of the client; only the batch
    ratio is compared with ``shape_failure_threshold``.

    Example:
        monitor = ShapeMonitor()
        monitor.start_batch(quote_url)
        for entry in result:
            if isinstance(entry, dict):
                monitor.record_success()
            else:
                monitor.record_failure()
        monitor.evaluate_batch()  # ShapeMismatchError above the threshold
    """

    def __init__(self, config: GlobalConfig | None = None) -> None:
        self.config = config or get_config()
        self._batch = _Tally()
        self._total = _Tally()
        self._url = ""

    def start_batch(self, url: str) -> None:
        self._batch = _Tally()
        self._url = url

    def record_success(self) -> None:
        for tally in (self._batch, self._total):
            tally.attempts += 1
            tally.successes += 1

    def record_failure(self) -> None:
        self._batch.attempts += 1
        self._total.attempts += 1

    @property
    def batch_failure_ratio(self) -> float:
        return self._batch.failure_ratio

    @property
    def total_failure_ratio(self) -> float:
        return self._total.failure_ratio

    def evaluate_batch(self) -> None:
        """Raise if the current batch is over the malformed-entry threshold.

        A batch with no entries passes: the provider answers with an empty
        list when none of the requested symbols exist.

        Raises:
            ShapeMismatchError: If the batch failure ratio exceeds the threshold.
        """
        if not self._batch.attempts:
            return

        ratio = self._batch.failure_ratio
        threshold = self.config.shape_failure_threshold
        # 7 of 10 at a 0.30 threshold must pass despite float rounding.
        if ratio <= threshold + 1e-9:
            return

        log.error(
            "Provider payload shape changed",
            failure_ratio=f"{ratio:.1%}",
            threshold=f"{threshold:.1%}",
            entries=self._batch.attempts,
            url=self._url,
        )
        raise ShapeMismatchError(
            url=self._url,
            reason=f"{self._batch.failures} of {self._batch.attempts} entries malformed",
            failure_ratio=ratio,
            threshold=threshold,
        )

    def get_summary(self) -> dict[str, Any]:
        """Lifetime counts, formatted for a log line."""
        return {
            "total_attempts": self._total.attempts,
            "total_successes": self._total.successes,
            "total_failures": self._total.failures,
            "total_failure_rate": f"{self.total_failure_ratio:.1%}",
            "threshold": f"{self.config.shape_failure_threshold:.1%}",
        }
