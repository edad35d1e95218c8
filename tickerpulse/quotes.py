"""Stock quote client.

Fetches the user's ticker list from the batched quote endpoint and converts
each entry into a :class:`~tickerpulse.models.Stock` whose numeric fields
are formatted strings.
"""

from collections.abc import Iterable

from tickerpulse.client import ProviderClient
from tickerpulse.models import QuoteSnapshot, Stock, sign_of, utc_now
from tickerpulse.numeric import format_field
from tickerpulse.validator import RawQuote


def stock_from_quote(ticker: str, quote: RawQuote) -> Stock:
    """Build a Stock record from a decoded provider entry.

    The provider reports the dividend yield as a fraction; it is stored as a
    percentage to match ``change_pct``.
    """
    dividend_yield = quote.trailing_annual_dividend_yield
    if dividend_yield is not None:
        dividend_yield *= 100

    return Stock(
        ticker=ticker,
        last_trade=format_field(quote.regular_market_price),
        change=format_field(quote.regular_market_change),
        change_pct=format_field(quote.regular_market_change_percent),
        direction=sign_of(quote.regular_market_change or 0.0),
        open=format_field(quote.regular_market_open),
        day_low=format_field(quote.regular_market_day_low),
        day_high=format_field(quote.regular_market_day_high),
        year_low=format_field(quote.fifty_two_week_low),
        year_high=format_field(quote.fifty_two_week_high),
        volume=format_field(quote.regular_market_volume),
        avg_volume=format_field(quote.average_daily_volume_10_day),
        pe_ratio=format_field(quote.trailing_pe),
        dividend_rate=format_field(quote.trailing_annual_dividend_rate),
        dividend_yield=format_field(dividend_yield),
        market_cap=format_field(quote.market_cap),
        currency=quote.currency or "",
    )


class QuoteClient(ProviderClient[QuoteSnapshot]):
    """Fetches quotes for a ticker list and keeps the last good snapshot.

    Example:
        async with httpx.AsyncClient() as http:
            quotes = QuoteClient(SessionManager(http))
            snapshot = await quotes.fetch(["AAPL", "MSFT"])
            print(snapshot.get("AAPL").last_trade)
    """

    @property
    def name(self) -> str:
        return "QuoteClient"

    def empty_snapshot(self) -> QuoteSnapshot:
        return QuoteSnapshot()

    async def fetch(self, tickers: Iterable[str]) -> QuoteSnapshot:
        """Fetch quotes for ``tickers``, preserving their order.

        Tickers the provider does not return are absent from the new
        snapshot; they are not carried over from the previous one. Blank
        entries are dropped before any request is made.

        Raises:
            AuthError: If no session could be obtained or it was rejected.
            FetchError: On transport, status, or decode failures. The
                previous snapshot is kept.
        """
        symbols = [ticker.strip() for ticker in tickers if ticker and ticker.strip()]
        return await self.refresh(symbols)

    def build_snapshot(self, symbols: list[str], quotes: dict[str, RawQuote]) -> QuoteSnapshot:
        stocks = tuple(
            stock_from_quote(ticker, quotes[ticker]) for ticker in symbols if ticker in quotes
        )
        return QuoteSnapshot(stocks=stocks, fetched_at=utc_now())
