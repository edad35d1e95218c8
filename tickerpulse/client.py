"""Shared request, decode and batching logic for provider clients.

QuoteClient and IndexClient both talk to the same batched quote endpoint.
This module provides the abstract base that:
- borrows an authenticated session from SessionManager
- splits the symbol list into provider-sized batches, in input order
- maps HTTP and decode failures onto the error taxonomy
- decodes the ``quoteResponse.result`` envelope into RawQuote entries
- keeps the last good snapshot when anything goes wrong

Subclasses only decide which symbols to ask for and how to turn the decoded
entries into their snapshot type.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from config.settings import GlobalConfig
from tickerpulse.exceptions import (
    AuthError,
    FetchError,
    RateLimitError,
    ShapeMismatchError,
    TickerPulseError,
)
from tickerpulse.logger import get_logger
from tickerpulse.session import Session, SessionManager
from tickerpulse.validator import RawQuote, ShapeMonitor

log = get_logger(__name__)

# Generic type variable for snapshot models
T = TypeVar("T", bound=BaseModel)


def batched(symbols: Sequence[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most ``size`` symbols."""
    for start in range(0, len(symbols), size):
        yield list(symbols[start:start + size])


def parse_retry_after(value: str | None) -> float | None:
    """Read a ``Retry-After`` header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class ProviderClient(ABC, Generic[T]):
    """Abstract base class for clients of the batched quote endpoint.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        sessions: SessionManager lending the cookie + crumb session.
        http: Injected async HTTP client (shared with the SessionManager).
        monitor: ShapeMonitor evaluating every decoded batch.
        last_error: The error of the most recent failed fetch, if any.

    Type Parameters:
        T: Snapshot model produced by a successful fetch.
    """

    def __init__(
        self,
        sessions: SessionManager,
        config: GlobalConfig | None = None,
    ) -> None:
        """Initialize the client with an empty snapshot.

        Args:
            sessions: SessionManager providing authenticated sessions.
            config: Optional GlobalConfig. Defaults to the manager's config.
        """
        self.config = config or sessions.config
        self.sessions = sessions
        self.http = sessions.http
        self.monitor = ShapeMonitor(self.config)
        self.last_error: TickerPulseError | None = None
        self._snapshot: T = self.empty_snapshot()

    @property
    @abstractmethod
    def name(self) -> str:
        """Return human-readable name for this client, used in logging."""
        ...

    @abstractmethod
    def empty_snapshot(self) -> T:
        """Return the snapshot held before the first successful fetch."""
        ...

    @abstractmethod
    def build_snapshot(self, symbols: list[str], quotes: dict[str, RawQuote]) -> T:
        """Turn decoded entries into a snapshot.

        Args:
            symbols: Requested symbols, in request order.
            quotes: Decoded entries keyed by requested symbol. Symbols the
                provider did not return are absent.

        Returns:
            The new snapshot.
        """
        ...

    @property
    def snapshot(self) -> T:
        """The last successfully fetched snapshot."""
        return self._snapshot

    async def refresh(self, symbols: list[str]) -> T:
        """Fetch ``symbols`` and replace the snapshot on success.

        On any failure the previous snapshot is left untouched, the error is
        recorded on ``last_error`` and re-raised for the caller to log.

        Raises:
            AuthError: If no session could be obtained or it was rejected.
            FetchError: On transport, status, or decode failures.
        """
        try:
            quotes = await self.fetch_quotes(symbols) if symbols else {}
            try:
                snapshot = self.build_snapshot(symbols, quotes)
            except ValidationError as exc:
                raise FetchError(
                    url=self.config.quote_url,
                    reason=f"unusable record: {exc.error_count()} validation error(s)",
                ) from exc
        except TickerPulseError as exc:
            self.last_error = exc
            log.warning(
                "Fetch failed, keeping last snapshot",
                client=self.name,
                error_type=type(exc).__name__,
                reason=exc.message,
            )
            raise

        self._snapshot = snapshot
        self.last_error = None
        log.debug(
            "Snapshot updated",
            client=self.name,
            requested=len(symbols),
            received=len(quotes),
        )
        return snapshot

    async def fetch_quotes(self, symbols: Sequence[str]) -> dict[str, RawQuote]:
        """Fetch and decode all symbols, batch by batch.

        Returns:
            Decoded entries keyed by requested symbol, in request order.
        """
        session = await self.sessions.ensure_session()

        quotes: dict[str, RawQuote] = {}
        for batch in batched(symbols, self.config.quote_batch_size):
            quotes.update(await self._fetch_batch(batch, session))

        return {symbol: quotes[symbol] for symbol in symbols if symbol in quotes}

    async def _fetch_batch(self, batch: list[str], session: Session) -> dict[str, RawQuote]:
        url = self.config.quote_url
        params = {"symbols": ",".join(batch), "crumb": session.crumb}

        try:
            response = await self.http.get(
                url,
                params=params,
                headers=self.sessions.request_headers,
                timeout=self.sessions.timeout,
            )
        except httpx.TimeoutException as exc:
            raise FetchError(
                url=url, reason=f"timeout after {self.config.request_timeout_ms}ms"
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(url=url, reason=str(exc) or type(exc).__name__) from exc

        status = response.status_code
        if status in (401, 403):
            self.sessions.invalidate(session.generation)
            raise AuthError(
                reason=f"quote endpoint returned HTTP {status}", url=url, status_code=status
            )
        if status == 429:
            raise RateLimitError(
                url=url, retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )
        if not response.is_success:
            raise FetchError(url=url, reason=f"HTTP {status}", status_code=status)

        entries = self._decode_envelope(response, url)
        return self._match_entries(batch, entries, url)

    def _decode_envelope(self, response: httpx.Response, url: str) -> list[Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(
                url=url, reason="response body is not valid JSON", status_code=response.status_code
            ) from exc

        envelope = payload.get("quoteResponse") if isinstance(payload, dict) else None
        if not isinstance(envelope, dict):
            raise ShapeMismatchError(url=url, reason="missing 'quoteResponse' object")

        if envelope.get("error"):
            raise FetchError(url=url, reason=f"provider error: {envelope['error']}")

        result = envelope.get("result")
        if not isinstance(result, list):
            raise ShapeMismatchError(url=url, reason="'quoteResponse.result' is not a list")

        return result

    def _match_entries(self, batch: list[str], entries: list[Any], url: str) -> dict[str, RawQuote]:
        """Pair entries with requested symbols, by symbol or else by position."""
        requested = {symbol.upper(): symbol for symbol in batch}
        matched: dict[str, RawQuote] = {}

        self.monitor.start_batch(url)

        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                self.monitor.record_failure()
                continue
            try:
                quote = RawQuote.model_validate(entry)
            except ValidationError as exc:
                log.warning(
                    "Quote entry rejected",
                    client=self.name,
                    position=position,
                    errors=exc.error_count(),
                )
                self.monitor.record_failure()
                continue

            self.monitor.record_success()

            if quote.symbol is not None:
                symbol = requested.get(quote.symbol.upper())
            elif position < len(batch):
                symbol = batch[position]
            else:
                symbol = None

            if symbol is None:
                log.debug("Unrequested quote entry ignored", client=self.name, symbol=quote.symbol)
                continue
            matched.setdefault(symbol, quote)

        self.monitor.evaluate_batch()

        missing = [symbol for symbol in batch if symbol not in matched]
        if missing:
            log.debug("Symbols missing from response", client=self.name, missing=missing)

        return matched
