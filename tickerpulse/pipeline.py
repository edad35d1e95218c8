"""Refresh-cycle coordination.

One refresh cycle fetches stock quotes and market indices concurrently,
sharing a single provider session. The coordinator does not schedule itself;
an external loop calls :meth:`TickerPipeline.refresh` once per tick. A tick
that arrives while the previous cycle is still running is skipped rather
than queued, which bounds the load on a rate-limited provider.

Failures never escape as exceptions: they are logged, returned on the
:class:`RefreshResult`, and the previous snapshots stay in place.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from config.settings import GlobalConfig, get_config
from tickerpulse.exceptions import RateLimitError, TickerPulseError
from tickerpulse.filter import FilterEngine
from tickerpulse.logger import get_logger
from tickerpulse.market import IndexClient
from tickerpulse.models import MarketSnapshot, QuoteSnapshot, Stock
from tickerpulse.quotes import QuoteClient
from tickerpulse.session import SessionManager
from tickerpulse.sorter import SortColumn, Sorter

log = get_logger(__name__)


class TickerListProvider(Protocol):
    """Read-only view of the user's ticker list and filter."""

    tickers: Sequence[str]
    filter_expression: str | None


@dataclass
class StaticTickerList:
    """In-memory ticker list, used by the bootstrap and in tests."""

    tickers: list[str] = field(default_factory=list)
    filter_expression: str | None = ""


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one refresh tick.

    Attributes:
        skipped: True if the tick was coalesced or inside a rate-limit window.
        errors: Errors raised by the quote and index fetches, if any.
    """

    skipped: bool = False
    errors: tuple[TickerPulseError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.errors


class TickerPipeline:
    """Wires the session, clients, filter and sorter together.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        sessions: Shared SessionManager.
        quotes: QuoteClient holding the stock snapshot.
        market: IndexClient holding the market snapshot.
        ticker_list: Collaborator supplying tickers and the filter text.
        filter: FilterEngine caching the compiled filter.
        sorter: Sorter used by :meth:`visible_stocks`.

    Example:
        async with httpx.AsyncClient() as http:
            pipeline = TickerPipeline(http, StaticTickerList(["AAPL", "MSFT"]))
            await pipeline.refresh()
            rows = pipeline.visible_stocks(SortColumn.CHANGE_PCT, descending=True)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        ticker_list: TickerListProvider,
        config: GlobalConfig | None = None,
        sessions: SessionManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or get_config()
        self.sessions = sessions or SessionManager(http, self.config, clock=clock)
        self.quotes = QuoteClient(self.sessions, self.config)
        self.market = IndexClient(self.sessions, self.config)
        self.ticker_list = ticker_list
        self.filter = FilterEngine()
        self.sorter = Sorter()
        self._clock = clock
        self._in_flight = False
        self._not_before = 0.0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def stock_snapshot(self) -> QuoteSnapshot:
        return self.quotes.snapshot

    @property
    def market_snapshot(self) -> MarketSnapshot:
        return self.market.snapshot

    async def refresh(self) -> RefreshResult:
        """Run one fetch cycle for quotes and indices.

        Returns:
            RefreshResult describing what happened. Snapshots are only
            replaced by fetches that succeeded.
        """
        if self._in_flight:
            log.debug("Refresh skipped, previous cycle still in flight")
            return RefreshResult(skipped=True)

        remaining = self._not_before - self._clock()
        if remaining > 0:
            log.info("Refresh skipped, provider rate limit", retry_in_sec=round(remaining, 1))
            return RefreshResult(skipped=True)

        self._in_flight = True
        try:
            outcomes = await asyncio.gather(
                self.quotes.fetch(list(self.ticker_list.tickers)),
                self.market.fetch(),
                return_exceptions=True,
            )
        finally:
            self._in_flight = False

        errors: list[TickerPulseError] = []
        for outcome in outcomes:
            if isinstance(outcome, TickerPulseError):
                errors.append(outcome)
                if isinstance(outcome, RateLimitError) and outcome.retry_after:
                    self._not_before = max(self._not_before, self._clock() + outcome.retry_after)
            elif isinstance(outcome, BaseException):
                raise outcome

        if errors:
            log.warning(
                "Refresh completed with errors",
                errors=[type(error).__name__ for error in errors],
            )
        else:
            log.info(
                "Refresh completed",
                stocks=len(self.stock_snapshot.stocks),
                indices=len(self.market_snapshot.indices),
                market_closed=self.market_snapshot.is_closed,
            )

        return RefreshResult(errors=tuple(errors))

    def visible_stocks(
        self,
        column: SortColumn | str | None = None,
        descending: bool = False,
    ) -> list[Stock]:
        """Filter and sort the current stock snapshot for rendering.

        Args:
            column: Sort column; None keeps the ticker-list order.
            descending: Reverse the sort order.

        Returns:
            A new list of records; the snapshot itself is not modified.
        """
        snapshot = self.stock_snapshot
        rows = self.filter.apply(snapshot.stocks, self.ticker_list.filter_expression)
        if column is None:
            return rows
        return self.sorter.sort(column, descending, rows)

    def shape_summary(self) -> dict[str, dict[str, Any]]:
        """Lifetime Watchdog counts for both clients, keyed by client."""
        return {
            "quotes": self.quotes.monitor.get_summary(),
            "indices": self.market.monitor.get_summary(),
        }
