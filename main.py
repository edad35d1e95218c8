"""TickerPulse Entry Point.

This module serves as the bootstrap and orchestration layer.
It contains NO business logic - all functional code resides in /tickerpulse.

Responsibilities:
    1. Initialize logging infrastructure (fail-fast on error)
    2. Load and validate configuration
    3. Drive the refresh loop, one tick per ``refresh_interval_sec``
    4. Handle top-level exceptions with graceful shutdown

Usage:
    python main.py
    TICKERS='["AAPL","TSLA"]' FILTER_EXPRESSION="change > 0" python main.py
"""

import asyncio
import sys
from typing import NoReturn

import httpx
from loguru import logger
from pydantic import ValidationError

from config.settings import GlobalConfig, get_config
from tickerpulse.exceptions import LoggingInitializationError, TickerPulseError
from tickerpulse.logger import configure_logging
from tickerpulse.models import Stock
from tickerpulse.pipeline import StaticTickerList, TickerPipeline
from tickerpulse.sorter import SortColumn


def _validate_startup_requirements(config: GlobalConfig) -> SortColumn:
    """Validate settings that pydantic cannot check on its own.

    Args:
        config: The validated GlobalConfig instance.

    Returns:
        The configured sort column.

    Raises:
        SystemExit: If the sort column is unknown.
    """
    try:
        column = SortColumn.from_name(config.sort_column)
    except ValueError as exc:
        logger.critical("Invalid sort column", sort_column=config.sort_column, error=str(exc))
        sys.exit(1)

    if not config.tickers:
        logger.warning("Ticker list is empty - only market indices will be shown")

    logger.debug(
        "Startup validation complete",
        tickers=len(config.tickers),
        sort_column=column.value,
        quote_url=config.quote_url,
    )
    return column


def _format_rows(rows: list[Stock]) -> str:
    """Plain-text rows for stdout; colored rendering lives outside the core."""
    lines = [f"{'Ticker':<10}{'Last':>12}{'Change':>12}{'Change%':>10}{'Volume':>12}{'MktCap':>12}"]
    for stock in rows:
        lines.append(
            f"{stock.ticker:<10}{stock.last_trade:>12}{stock.change:>12}"
            f"{stock.change_pct:>10}{stock.volume:>12}{stock.market_cap:>12}"
        )
    return "\n".join(lines)


async def _run_pipeline(config: GlobalConfig, column: SortColumn) -> int:
    """Run the refresh loop until ``max_cycles`` ticks or interruption.

    Each tick starts a refresh in the background; if the previous one is
    still running the pipeline skips the tick.

    Args:
        config: The validated GlobalConfig instance.
        column: Column to sort the visible rows by.

    Returns:
        Exit code (0 for success).
    """
    logger.info(
        "Refresh loop started",
        app_name=config.app_name,
        environment=config.environment,
        tickers=len(config.tickers),
        interval_sec=config.refresh_interval_sec,
        max_cycles=config.max_cycles,
    )

    ticker_list = StaticTickerList(list(config.tickers), config.filter_expression)
    pending: set[asyncio.Task] = set()

    async with httpx.AsyncClient() as http:
        pipeline = TickerPipeline(http, ticker_list, config)

        def _on_done(task: asyncio.Task) -> None:
            pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.opt(exception=exc).error("Refresh task crashed", error=str(exc))
                return
            if task.result().skipped:
                return
            print(_format_rows(pipeline.visible_stocks(column, config.sort_descending)), flush=True)

        cycles = 0
        try:
            while config.max_cycles == 0 or cycles < config.max_cycles:
                task = asyncio.create_task(pipeline.refresh())
                task.add_done_callback(_on_done)
                pending.add(task)
                cycles += 1
                await asyncio.sleep(config.refresh_interval_sec)

            if pending:
                await asyncio.gather(*pending)
        finally:
            for task in pending:
                task.cancel()

    logger.info("Refresh loop finished", cycles=cycles, shape=pipeline.shape_summary())
    return 0


def _handle_fatal_error(exc: Exception) -> NoReturn:
    """Log an error that escaped the refresh loop, then exit non-zero.

    Core errors never reach this point during normal operation; anything
    that does is either a TickerPulseError raised outside a refresh cycle
    or a bug.
    """
    if isinstance(exc, TickerPulseError):
        logger.critical(
            "Refresh loop aborted",
            error_type=type(exc).__name__,
            message=exc.message,
            context=exc.context,
        )
    else:
        logger.opt(exception=exc).critical("Refresh loop crashed", error=str(exc))
    sys.exit(1)


def main() -> int:
    """Load settings, start logging, and run the refresh loop.

    Returns:
        0 on a clean finish, 1 on a startup or fatal error, 130 on Ctrl+C.
    """
    try:
        config = get_config()
        configure_logging(config)
    except (ValidationError, LoggingInitializationError) as exc:
        print(f"FATAL: cannot start: {exc}", file=sys.stderr)
        return 1

    column = _validate_startup_requirements(config)

    try:
        return asyncio.run(_run_pipeline(config, column))
    except KeyboardInterrupt:
        logger.warning("Refresh loop interrupted by user (Ctrl+C)")
        return 130
    except Exception as exc:
        _handle_fatal_error(exc)


if __name__ == "__main__":
    sys.exit(main())
