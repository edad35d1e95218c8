"""Number normalization shared by the fetch, filter and sort paths.

Every numeric field on a record is stored as a formatted string such as
``"150.250"``, ``"-3.100"`` or ``"2.513T"``. This module owns the single
suffix table used in both directions so that display values and comparison
values never drift apart.

Parse direction:
    ``"$10.50" -> 10.5``, ``"0.03%" -> 0.03``, ``"1.2K" -> 1200.0``,
    ``" 100 " -> 100.0``. Unparseable input yields ``0.0``.

Format direction:
    ``100.0 -> "100.000"``, ``1500000.0 -> "1.500M"``,
    ``100001.0 -> "100.001K"``. Thresholds are strict and checked
    from the largest suffix down.
"""

import math
import re
import struct
from decimal import Decimal

from tickerpulse.exceptions import FieldParseError
from tickerpulse.logger import get_logger

log = get_logger(__name__)

SUFFIX_FACTORS: dict[str, Decimal] = {
    "K": Decimal(10) ** 3,
    "M": Decimal(10) ** 6,
    "B": Decimal(10) ** 9,
    "T": Decimal(10) ** 12,
}

# (suffix, threshold, divisor); "K" kicks in above 1e5, not 1e3.
_FORMAT_STEPS: tuple[tuple[str, float, float], ...] = (
    ("T", 1e12, 1e12),
    ("B", 1e9, 1e9),
    ("M", 1e6, 1e6),
    ("K", 1e5, 1e3),
)

CURRENCY_MARKERS = frozenset("$£€¥₹")

_DECIMAL_PATTERN = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

_FLOAT32_MAX = 3.4028234663852886e38


def parse_number_strict(value: str, field: str | None = None) -> float:
    """Parse a formatted numeric string, raising on malformed input.

    Accepted grammar: optional sign, optional currency marker, digits with an
    optional fraction or exponent, ``,`` thousands separators, then an
    optional ``K``/``M``/``B``/``T`` suffix and/or a trailing ``%``.

    Args:
        value: Text to parse.
        field: Optional field name, used only for error context.

    Returns:
        The parsed value as a float.

    Raises:
        FieldParseError: If the text does not match the grammar.
    """
    if not isinstance(value, str):
        raise FieldParseError(value, f"expected str, got {type(value).__name__}", field)

    text = value.strip()
    sign = ""

    if text[:1] in ("+", "-"):
        sign, text = text[0], text[1:].lstrip()
    if text[:1] in CURRENCY_MARKERS:
        text = text[1:].lstrip()
    if not sign and text[:1] in ("+", "-"):
        sign, text = text[0], text[1:].lstrip()
    if text.endswith("%"):
        text = text[:-1].rstrip()

    text = text.replace(",", "")

    factor = Decimal(1)
    if text[-1:] in SUFFIX_FACTORS:
        factor = SUFFIX_FACTORS[text[-1]]
        text = text[:-1].rstrip()

    if not _DECIMAL_PATTERN.match(text):
        raise FieldParseError(value, "does not match the number grammar", field)

    try:
        return float(Decimal(sign + text) * factor)
    except ArithmeticError as exc:
        raise FieldParseError(value, str(exc), field) from exc


def parse_number(value: str) -> float:
    """Parse a formatted numeric string, failing closed to ``0.0``.

    A single bad field must not abort a whole record, so malformed input
    is logged at debug level and treated as zero. The empty string is the
    canonical "no value" marker and parses to zero silently.
    """
    if isinstance(value, str) and not value.strip():
        return 0.0
    try:
        return parse_number_strict(value)
    except FieldParseError as exc:
        log.debug("Numeric field degraded to zero", value=repr(value), reason=exc.message)
        return 0.0


def format_number(value: float) -> str:
    """Render a number as a three-decimal, suffix-compressed string.

    Args:
        value: Raw number from the provider.

    Returns:
        Formatted string, e.g. ``"-500.000"`` or ``"2.000B"``.
    """
    if not math.isfinite(value):
        log.debug("Non-finite value formatted as zero", value=repr(value))
        return "0.000"

    magnitude = abs(value)
    for suffix, threshold, divisor in _FORMAT_STEPS:
        if magnitude > threshold:
            return f"{value / divisor:.3f}{suffix}"

    text = f"{value:.3f}"
    return "0.000" if text == "-0.000" else text


def format_field(value: float | None) -> str:
    """Format an optional provider value; a missing value becomes ``""``."""
    return "" if value is None else format_number(value)


def currency_value(value: str) -> float:
    """Strip currency/percent markers and return a 32-bit precision float.

    Used by the sort path for price and change-like columns.
    """
    number = parse_number(value)
    number = max(-_FLOAT32_MAX, min(_FLOAT32_MAX, number))
    return struct.unpack("f", struct.pack("f", number))[0]


def market_cap_value(value: str) -> float:
    """Parse a suffixed market capitalization; the empty string is zero."""
    if not value:
        return 0.0
    return parse_number(value)
