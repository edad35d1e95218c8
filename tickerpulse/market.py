"""Market index client.

Fetches the configured indices, commodities and currency pairs shown above
the quote table, plus the market open/closed flag.
"""

from tickerpulse.client import ProviderClient
from tickerpulse.logger import get_logger
from tickerpulse.models import Index, MarketSnapshot, sign_of, utc_now
from tickerpulse.numeric import format_field
from tickerpulse.validator import RawQuote

log = get_logger(__name__)

OPEN_MARKET_STATE = "REGULAR"


class IndexClient(ProviderClient[MarketSnapshot]):
    """Fetches index data with the reduced price/change field set.

    Index symbols come from ``config.index_symbols`` in display order. The
    market is considered closed when the first returned index reports a
    ``marketState`` other than ``REGULAR``; without any ``marketState`` the
    previous flag is kept.
    """

    @property
    def name(self) -> str:
        return "IndexClient"

    def empty_snapshot(self) -> MarketSnapshot:
        return MarketSnapshot()

    async def fetch(self) -> MarketSnapshot:
        """Fetch all configured indices.

        Raises:
            AuthError: If no session could be obtained or it was rejected.
            FetchError: On transport, status, or decode failures. The
                previous snapshot is kept.
        """
        return await self.refresh(list(self.config.index_symbols.values()))

    def build_snapshot(self, symbols: list[str], quotes: dict[str, RawQuote]) -> MarketSnapshot:
        indices: list[Index] = []
        market_state: str | None = None

        for name, symbol in self.config.index_symbols.items():
            quote = quotes.get(symbol)
            if quote is None:
                continue
            if market_state is None and quote.market_state is not None:
                market_state = quote.market_state
            indices.append(
                Index(
                    name=name,
                    symbol=symbol,
                    latest=format_field(quote.regular_market_price),
                    change=format_field(quote.regular_market_change),
                    change_pct=format_field(quote.regular_market_change_percent),
                    direction=sign_of(quote.regular_market_change or 0.0),
                )
            )

        if market_state is None:
            is_closed = self.snapshot.is_closed
        else:
            is_closed = market_state != OPEN_MARKET_STATE
            if is_closed != self.snapshot.is_closed:
                log.info("Market session changed", market_state=market_state, is_closed=is_closed)

        return MarketSnapshot(indices=tuple(indices), is_closed=is_closed, fetched_at=utc_now())
