"""TickerPulse core package.

Data acquisition and normalization for a live terminal market ticker:
- numeric: parse/format numbers with currency, percent and K/M/B/T suffixes
- session: cookie + crumb session management against the quote provider
- quotes / market: batched quote and index fetching with fail-soft snapshots
- validator: raw payload schema and shape watchdog
- models: Stock / Index records and snapshots
- filter: filter expression compiler and stable filtering
- sorter: per-column comparators and stable sorting
- pipeline: refresh-cycle coordination
- logger: structured loguru logging
- exceptions: custom exception hierarchy
"""

__version__ = "1.0.0"
