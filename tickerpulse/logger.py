"""Structured logging built on loguru.

``configure_logging`` runs once at bootstrap and installs two sinks:

- stderr, colorized and human-readable, for whoever is watching the terminal
- ``<log_dir>/tickerpulse_<date>.json``, one JSON object per line, rotated,
  retained and gzip-compressed according to the config

Modules never import ``loguru.logger`` directly for their own messages;
they call :func:`get_logger` so every line carries the emitting module.
Keyword arguments given to a log call are collected under ``context``
in the JSON output.
"""

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import GlobalConfig, get_config
from tickerpulse.exceptions import LoggingInitializationError

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{extra[module]}</cyan> | "
    "<level>{message}</level>"
)

LOG_FILE_PATTERN = "tickerpulse_{time:YYYY-MM-DD}.json"

# Keys used internally by the sinks, never written as context.
_RESERVED_EXTRA = frozenset({"json_line"})


def _to_json_line(record: dict[str, Any]) -> str:
    """Serialize one loguru record as a JSON line."""
    entry: dict[str, Any] = {
        "timestamp": record["time"].astimezone(UTC).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    context = {k: v for k, v in record["extra"].items() if k not in _RESERVED_EXTRA}
    if context:
        entry["context"] = context

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "value": str(exc_value) if exc_value is not None else None,
        }

    return json.dumps(entry, default=str)


def _attach_json_line(record: dict[str, Any]) -> bool:
    record["extra"]["json_line"] = _to_json_line(record)
    return True


def _ensure_writable(log_dir: Path) -> None:
    """Create ``log_dir`` if needed and prove a file can be written there.

    Raises:
        LoggingInitializationError: If the directory is unusable.
    """
    probe = log_dir / f".probe-{datetime.now(UTC).timestamp():.0f}"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        probe.touch()
        probe.unlink()
    except OSError as exc:
        kind = "permission denied" if isinstance(exc, PermissionError) else "unusable"
        raise LoggingInitializationError(log_dir=str(log_dir), reason=f"{kind}: {exc}") from exc


def configure_logging(config: GlobalConfig | None = None) -> None:
    """Replace loguru's default handler with the console and JSON sinks.

    Args:
        config: Settings to use; the cached singleton when omitted.

    Raises:
        LoggingInitializationError: If ``config.log_dir`` cannot be written.
    """
    config = config or get_config()

    _ensure_writable(config.log_dir)

    logger.remove()
    logger.configure(extra={"module": "-"})

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=config.log_level,
        colorize=True,
        backtrace=config.debug,
        diagnose=config.debug,
    )
    logger.add(
        str(config.log_dir / LOG_FILE_PATTERN),
        format="{extra[json_line]}",
        filter=_attach_json_line,
        level=config.log_level,
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="gz",
    )

    get_logger(__name__).info(
        "Logging configured",
        app_name=config.app_name,
        environment=config.environment,
        level=config.log_level,
        log_dir=str(config.log_dir),
    )


def get_logger(name: str) -> "logger":
    """Return the shared logger bound to ``name``.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("Quotes fetched", tickers=12)
    """
    return logger.bind(module=name)
