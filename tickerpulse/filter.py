"""Filter expression compiler and stable record filtering.

Expressions compare one record attribute with a literal::

    last > 200
    change <= -1.5%
    mktcap >= 10B
    ticker != "GOOG"

and may be combined with ``and``/``&&``, ``or``/``||``, ``not``/``!`` and
parentheses (``not`` binds tightest, then ``and``, then ``or``). Field names
are case-insensitive and ignore underscores, so ``change_pct``,
``changePct`` and ``changepct`` are the same field.

Numeric fields are compared after parsing both the record value and the
literal with :mod:`tickerpulse.numeric`; ``ticker`` and ``currency`` are
compared as raw strings. An unknown field or a malformed literal is rejected
at compile time with :class:`~tickerpulse.exceptions.FilterConfigError`.
"""

import operator
import re
from collections.abc import Callable, Iterable
from enum import Enum

from tickerpulse.exceptions import FieldParseError, FilterConfigError
from tickerpulse.logger import get_logger
from tickerpulse.models import Stock
from tickerpulse.numeric import market_cap_value, parse_number, parse_number_strict

log = get_logger(__name__)

Predicate = Callable[[Stock], bool]


class FieldKind(str, Enum):
    NUMBER = "number"
    MARKET_CAP = "market_cap"
    DIRECTION = "direction"
    TEXT = "text"


# Normalized name -> (Stock attribute, kind)
FIELDS: dict[str, tuple[str, FieldKind]] = {
    "ticker": ("ticker", FieldKind.TEXT),
    "symbol": ("ticker", FieldKind.TEXT),
    "last": ("last_trade", FieldKind.NUMBER),
    "lasttrade": ("last_trade", FieldKind.NUMBER),
    "price": ("last_trade", FieldKind.NUMBER),
    "change": ("change", FieldKind.NUMBER),
    "changepct": ("change_pct", FieldKind.NUMBER),
    "changepercent": ("change_pct", FieldKind.NUMBER),
    "direction": ("direction", FieldKind.DIRECTION),
    "open": ("open", FieldKind.NUMBER),
    "low": ("day_low", FieldKind.NUMBER),
    "daylow": ("day_low", FieldKind.NUMBER),
    "high": ("day_high", FieldKind.NUMBER),
    "dayhigh": ("day_high", FieldKind.NUMBER),
    "low52": ("year_low", FieldKind.NUMBER),
    "yearlow": ("year_low", FieldKind.NUMBER),
    "high52": ("year_high", FieldKind.NUMBER),
    "yearhigh": ("year_high", FieldKind.NUMBER),
    "volume": ("volume", FieldKind.NUMBER),
    "avgvolume": ("avg_volume", FieldKind.NUMBER),
    "pe": ("pe_ratio", FieldKind.NUMBER),
    "peratio": ("pe_ratio", FieldKind.NUMBER),
    "dividend": ("dividend_rate", FieldKind.NUMBER),
    "dividendrate": ("dividend_rate", FieldKind.NUMBER),
    "yield": ("dividend_yield", FieldKind.NUMBER),
    "dividendyield": ("dividend_yield", FieldKind.NUMBER),
    "mktcap": ("market_cap", FieldKind.MARKET_CAP),
    "marketcap": ("market_cap", FieldKind.MARKET_CAP),
    "currency": ("currency", FieldKind.TEXT),
}

OPERATORS: dict[str, Callable[[object, object], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<op>>=|<=|==|!=|>|<)
    | (?P<and>&&)
    | (?P<or>\|\|)
    | (?P<not>!)
    | (?P<string>"[^"]*"|'[^']*')
    | (?P<word>[^\s()<>=!&|"']+)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and": "and", "or": "or", "not": "not"}


def always_true(stock: Stock) -> bool:
    return True


def normalize_field_name(name: str) -> str:
    return name.replace("_", "").lower()


def _tokenize(expression: str) -> list[tuple[str, str, int]]:
    tokens: list[tuple[str, str, int]] = []
    position = 0
    length = len(expression)

    while position < length:
        if expression[position].isspace():
            position += 1
            continue

        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            raise FilterConfigError(
                expression, f"unexpected character {expression[position]!r}", position
            )

        kind, text = match.lastgroup, match.group()
        if kind == "word" and text.lower() in _KEYWORDS:
            kind = _KEYWORDS[text.lower()]
        tokens.append((kind, text, position))
        position = match.end()

    return tokens


class _Parser:
    """Recursive-descent parser producing a predicate closure."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = _tokenize(expression)
        self.index = 0

    def parse(self) -> Predicate:
        predicate = self._parse_or()
        if self.index < len(self.tokens):
            _, text, position = self.tokens[self.index]
            raise FilterConfigError(self.expression, f"unexpected token {text!r}", position)
        return predicate

    def _peek(self) -> str | None:
        return self.tokens[self.index][0] if self.index < len(self.tokens) else None

    def _take(self, *kinds: str, expected: str) -> tuple[str, str, int]:
        if self.index >= len(self.tokens):
            raise FilterConfigError(self.expression, f"expected {expected}, got end of expression")
        token = self.tokens[self.index]
        if token[0] not in kinds:
            raise FilterConfigError(
                self.expression, f"expected {expected}, got {token[1]!r}", token[2]
            )
        self.index += 1
        return token

    def _parse_or(self) -> Predicate:
        predicate = self._parse_and()
        while self._peek() == "or":
            self.index += 1
            predicate = _either(predicate, self._parse_and())
        return predicate

    def _parse_and(self) -> Predicate:
        predicate = self._parse_unary()
        while self._peek() == "and":
            self.index += 1
            predicate = _both(predicate, self._parse_unary())
        return predicate

    def _parse_unary(self) -> Predicate:
        kind = self._peek()
        if kind == "not":
            self.index += 1
            return _negate(self._parse_unary())
        if kind == "lparen":
            self.index += 1
            predicate = self._parse_or()
            self._take("rparen", expected="')'")
            return predicate
        return self._parse_comparison()

    def _parse_comparison(self) -> Predicate:
        _, name, name_position = self._take("word", expected="field name")
        _, symbol, _ = self._take("op", expected="comparison operator")
        kind, literal, literal_position = self._take("word", "string", expected="value")

        field = FIELDS.get(normalize_field_name(name))
        if field is None:
            raise FilterConfigError(self.expression, f"unknown field {name!r}", name_position)

        if kind == "string":
            literal = literal[1:-1]

        attribute, field_kind = field
        compare = OPERATORS[symbol]

        if field_kind is FieldKind.TEXT:
            return _text_comparison(attribute, compare, literal)

        try:
            number = parse_number_strict(literal, field=attribute)
        except FieldParseError as exc:
            raise FilterConfigError(
                self.expression, f"{literal!r} is not a number", literal_position
            ) from exc

        return _numeric_comparison(attribute, field_kind, compare, number)


def _text_comparison(attribute: str, compare: Callable, literal: str) -> Predicate:
    def predicate(stock: Stock) -> bool:
        return compare(getattr(stock, attribute), literal)

    return predicate


def _numeric_comparison(
    attribute: str, kind: FieldKind, compare: Callable, number: float
) -> Predicate:
    if kind is FieldKind.DIRECTION:
        extract: Callable[[object], float] = float
    elif kind is FieldKind.MARKET_CAP:
        extract = market_cap_value
    else:
        extract = parse_number

    def predicate(stock: Stock) -> bool:
        return compare(extract(getattr(stock, attribute)), number)

    return predicate


def _both(left: Predicate, right: Predicate) -> Predicate:
    return lambda stock: left(stock) and right(stock)


def _either(left: Predicate, right: Predicate) -> Predicate:
    return lambda stock: left(stock) or right(stock)


def _negate(inner: Predicate) -> Predicate:
    return lambda stock: not inner(stock)


def compile_filter(expression: str | None) -> Predicate:
    """Compile a filter expression into a predicate.

    Args:
        expression: Filter text. Empty, blank or None means "no filtering".

    Returns:
        A predicate over Stock records.

    Raises:
        FilterConfigError: If the expression is malformed.
    """
    if expression is None or not expression.strip():
        return always_true
    return _Parser(expression).parse()


class FilterEngine:
    """Applies the user's filter expression to stock records.

    The compiled predicate is cached and only rebuilt when the expression
    string changes. A malformed expression keeps the last valid predicate
    in force (no filtering until a valid one has been seen), and the bad
    string is remembered so it is reported once rather than every tick.

    Attributes:
        expression: The expression last passed in, valid or not.
        last_error: The compile error for ``expression``, if it was invalid.

    Example:
        engine = FilterEngine()
        visible = engine.apply(snapshot.stocks, "last > 200 and change > 0")
    """

    def __init__(self) -> None:
        self.expression: str | None = None
        self.last_error: FilterConfigError | None = None
        self._predicate: Predicate = always_true

    def compile(self, expression: str | None) -> Predicate:
        """Compile ``expression`` and make it the active predicate.

        Raises:
            FilterConfigError: If the expression is malformed. The active
                predicate is left unchanged.
        """
        self.expression = expression
        try:
            predicate = compile_filter(expression)
        except FilterConfigError as exc:
            self.last_error = exc
            raise

        self.last_error = None
        self._predicate = predicate
        return predicate

    def apply(self, records: Iterable[Stock], expression: str | None = None) -> list[Stock]:
        """Return the records matching the filter, in their original order.

        Args:
            records: Stock records to scan; never mutated.
            expression: Current filter text. None or blank means no filter.

        Returns:
            A new list holding exactly the matching records.
        """
        if expression != self.expression:
            try:
                self.compile(expression)
            except FilterConfigError as exc:
                log.warning(
                    "Invalid filter expression, keeping previous filter",
                    expression=expression,
                    reason=exc.reason,
                    position=exc.position,
                )

        predicate = self._predicate
        return [record for record in records if predicate(record)]
