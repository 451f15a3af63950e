"""
Logging setup for the fund allocator.

Everything logs under the "fund_allocator" logger to stderr, keeping stdout
for the purchase report. Price lookups, purchases and solver progress are
logged as events: the message is for people, and the fields passed through
`extra` (event_type, symbol, shares, ...) are for JSON log consumers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

ROOT_LOGGER_NAME = "fund_allocator"

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes present on every LogRecord; the rest arrived through `extra`
_STANDARD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any `extra` fields."""

    def __init__(
        self,
        include_timestamp: bool = True,
        include_source: bool = False,
        static_fields: Optional[dict] = None,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_source = include_source
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = dict(self.static_fields)

        if self.include_timestamp:
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            entry["timestamp"] = created.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        entry.update(level=record.levelname, logger=record.name, message=record.getMessage())
        if self.include_source:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRIBUTES
        )
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
    console_output: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Configure the fund_allocator logger, replacing any handlers it already has.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        log_file: Also log to this file, rotated at max_bytes
        json_format: Emit JSON instead of plain text
        console_output: Log to stderr
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files to keep

    Returns:
        The fund_allocator logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count))

    formatter = JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def setup_logging_from_settings(settings: dict, verbose: bool = False) -> logging.Logger:
    """Configure logging from the `logging` section of the settings; verbose forces DEBUG."""
    options = settings.get("logging", {})

    return setup_logging(
        level="DEBUG" if verbose else options.get("level", "INFO"),
        log_file=options.get("file"),
        json_format=options.get("json_format", False),
    )


def _event(logger: logging.Logger, level: int, message: str, event_type: str, **fields: Any) -> None:
    logger.log(level, message, extra={"event_type": event_type, **fields})


def log_price(logger: logging.Logger, symbol: str, price: float, source: str) -> None:
    """A market price was fetched."""
    _event(
        logger, logging.INFO, f"Price for {symbol}: ${price:.2f} ({source})", "price",
        symbol=symbol, price=price, source=source,
    )


def log_purchase(
    logger: logging.Logger,
    symbol: str,
    shares: int,
    price: float,
    new_proportion: float,
) -> None:
    """One line of a purchase plan."""
    _event(
        logger,
        logging.INFO,
        f"BUY {shares} shares of {symbol} at ${price:.2f} "
        f"(new proportion {new_proportion * 100:.2f}%)",
        "purchase",
        symbol=symbol,
        shares=shares,
        price=price,
        cost=shares * price,
        new_proportion=new_proportion,
    )


def log_solver_stage(
    logger: logging.Logger,
    stage: str,
    iteration: int,
    value: float,
    elapsed: float,
) -> None:
    """Progress of one solver stage, at debug level."""
    _event(
        logger,
        logging.DEBUG,
        f"Solver {stage} step {iteration}: {value:.9f} after {elapsed:.3f}s",
        "solver",
        stage=stage,
        iteration=iteration,
        value=value,
        elapsed=elapsed,
    )
