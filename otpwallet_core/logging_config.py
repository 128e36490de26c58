"""
Logging setup for the tree builder and its command-line driver.

Two console formats:
  - **human** – coloured single line
  - **json**  – one JSON object per line

Build progress records may carry ``salt`` and ``stage`` attributes (passed via
``extra=``); both formatters render them when present.

Usage:
    from otpwallet_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="builder.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from otpwallet_core.errors import InvalidConfigurationError

LOGGER_NAME = "otpwallet"
FORMATS = ("human", "json")

_EXTRA_FIELDS = ("salt", "stage")


def _extras(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in _EXTRA_FIELDS if hasattr(record, k)}


class _JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{colour}{ts} [{record.levelname:<7}]{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        extras = _extras(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``otpwallet`` logger hierarchy.

    Parameters
    ----------
    level : str
        DEBUG, INFO, WARNING, ERROR or CRITICAL.
    fmt : str
        ``"human"`` or ``"json"`` for the console handler.
    log_file : str, optional
        Additional file handler; always JSON.

    Returns the configured ``otpwallet`` logger.
    """
    if fmt not in FORMATS:
        raise InvalidConfigurationError(f"Unknown log format {fmt!r}")
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    # reconfiguring replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_JSONFormatter() if fmt == "json" else _HumanFormatter())
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())
        logger.addHandler(fh)
    return logger
