"""Per-column comparators and stable sorting for stock records.

Record fields are formatted strings, so every comparator parses both operands
back to numbers first: price and change-like columns through the
currency-strip parser, market capitalization through the market-cap parser,
volume and P/E through the plain parser. The ticker column compares raw
strings.
"""

from collections.abc import Callable, Iterable
from enum import Enum

from tickerpulse.models import Stock
from tickerpulse.numeric import currency_value, market_cap_value, parse_number

Comparator = Callable[[Stock, Stock], int]


class SortColumn(str, Enum):
    TICKER = "ticker"
    LAST_TRADE = "last_trade"
    CHANGE = "change"
    CHANGE_PCT = "change_pct"
    OPEN = "open"
    DAY_LOW = "day_low"
    DAY_HIGH = "day_high"
    YEAR_LOW = "year_low"
    YEAR_HIGH = "year_high"
    VOLUME = "volume"
    AVG_VOLUME = "avg_volume"
    PE_RATIO = "pe_ratio"
    DIVIDEND_RATE = "dividend_rate"
    DIVIDEND_YIELD = "dividend_yield"
    MARKET_CAP = "market_cap"

    @classmethod
    def from_name(cls, name: str) -> "SortColumn":
        """Look up a column by value or member name, case-insensitively.

        Raises:
            ValueError: If no column matches.
        """
        wanted = name.strip().lower()
        for column in cls:
            if wanted in (column.value, column.name.lower()):
                return column
        raise ValueError(f"Unknown sort column '{name}'")


_PARSERS: dict[SortColumn, Callable[[str], float]] = {
    SortColumn.LAST_TRADE: currency_value,
    SortColumn.CHANGE: currency_value,
    SortColumn.CHANGE_PCT: currency_value,
    SortColumn.OPEN: currency_value,
    SortColumn.DAY_LOW: currency_value,
    SortColumn.DAY_HIGH: currency_value,
    SortColumn.YEAR_LOW: currency_value,
    SortColumn.YEAR_HIGH: currency_value,
    SortColumn.DIVIDEND_RATE: currency_value,
    SortColumn.DIVIDEND_YIELD: currency_value,
    SortColumn.VOLUME: parse_number,
    SortColumn.AVG_VOLUME: parse_number,
    SortColumn.PE_RATIO: parse_number,
    SortColumn.MARKET_CAP: market_cap_value,
}


def sort_key(column: SortColumn) -> Callable[[Stock], str | float]:
    """Return the key function used to order records by ``column``."""
    if column is SortColumn.TICKER:
        return lambda stock: stock.ticker

    parse = _PARSERS[column]
    attribute = column.value
    return lambda stock: parse(getattr(stock, attribute))


def comparator(column: SortColumn, descending: bool = False) -> Comparator:
    """Return a three-way comparator for ``column``.

    Equal keys compare as 0 in both directions, so a stable sort keeps
    their input order whichever way the column is sorted.
    """
    key = sort_key(column)

    def compare(left: Stock, right: Stock) -> int:
        a, b = key(left), key(right)
        result = (a > b) - (a < b)
        return -result if descending else result

    return compare


class Sorter:
    """Orders stock records by a chosen column.

    Example:
        rows = Sorter().sort(SortColumn.MARKET_CAP, True, snapshot.stocks)
    """

    def sort(
        self,
        column: SortColumn | str,
        descending: bool,
        records: Iterable[Stock],
    ) -> list[Stock]:
        """Return a new list of ``records`` ordered by ``column``.

        Sorting is stable in both directions: records with equal keys keep
        their relative input order.
        """
        if not isinstance(column, SortColumn):
            column = SortColumn.from_name(column)
        return sorted(records, key=sort_key(column), reverse=descending)

    def comparator(self, column: SortColumn, descending: bool = False) -> Comparator:
        return comparator(column, descending)
