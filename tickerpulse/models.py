"""Normalized records and snapshots handed to filtering, sorting and rendering.

All numeric attributes are formatted strings produced by
:func:`tickerpulse.numeric.format_number`; they are never stored as floats.
Records are frozen so a snapshot can be shared with the renderer while the
next refresh cycle is building a new one.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tickerpulse.numeric import parse_number


def sign_of(value: float) -> int:
    """Return -1, 0 or +1 for the sign of ``value``."""
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    change: str = ""
    direction: int = Field(default=0, ge=-1, le=1)

    @model_validator(mode="after")
    def validate_direction(self) -> "_Record":
        """Reject a direction whose sign contradicts the change value.

        A change that rounds to ``"0.000"`` may still carry the direction of
        the unrounded provider value.
        """
        parsed = sign_of(parse_number(self.change))
        if parsed != 0 and parsed != self.direction:
            raise ValueError(
                f"direction {self.direction} does not match change '{self.change}'"
            )
        return self


class Stock(_Record):
    """One row of the quote table.

    Attributes:
        ticker: Provider symbol, the immutable record key.
        last_trade: Last traded price.
        change: Absolute change since the previous close.
        change_pct: Percentage change since the previous close.
        direction: Sign of the raw change (-1, 0, +1).
        open: Opening price.
        day_low: Session low.
        day_high: Session high.
        year_low: 52-week low.
        year_high: 52-week high.
        volume: Session volume.
        avg_volume: Ten-day average daily volume.
        pe_ratio: Trailing price/earnings ratio.
        dividend_rate: Trailing annual dividend per share.
        dividend_yield: Trailing annual dividend yield, in percent.
        market_cap: Market capitalization.
        currency: Quote currency code.
    """

    ticker: str = Field(..., min_length=1)
    last_trade: str = ""
    change_pct: str = ""
    open: str = ""
    day_low: str = ""
    day_high: str = ""
    year_low: str = ""
    year_high: str = ""
    volume: str = ""
    avg_volume: str = ""
    pe_ratio: str = ""
    dividend_rate: str = ""
    dividend_yield: str = ""
    market_cap: str = ""
    currency: str = ""


class Index(_Record):
    """One market index, commodity or currency pair shown in the header."""

    name: str
    symbol: str
    latest: str = ""
    change_pct: str = ""


class QuoteSnapshot(BaseModel):
    """The most recent complete set of stock records."""

    model_config = ConfigDict(frozen=True)

    stocks: tuple[Stock, ...] = ()
    fetched_at: datetime | None = None

    @property
    def tickers(self) -> list[str]:
        return [stock.ticker for stock in self.stocks]

    def get(self, ticker: str) -> Stock | None:
        for stock in self.stocks:
            if stock.ticker == ticker:
                return stock
        return None


class MarketSnapshot(BaseModel):
    """The most recent set of index records plus the market session flag."""

    model_config = ConfigDict(frozen=True)

    indices: tuple[Index, ...] = ()
    is_closed: bool = False
    fetched_at: datetime | None = None

    def get(self, name: str) -> Index | None:
        for index in self.indices:
            if index.name == name:
                return index
        return None


def utc_now() -> datetime:
    return datetime.now(UTC)
