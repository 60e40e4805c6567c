"""
Logging setup for the gateway and the job service.

Provides:
    - StructuredFormatter: JSON formatter for machine-parseable log output.
    - configure_logging: root logger setup shared by both app factories.
    - LogBuffer: per-app ring buffer of recent records behind the logs endpoint.
"""
from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

TEXT_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output.

    Each log record is serialised as a single JSON line containing at minimum:
        timestamp, level, logger, message.
    Fields passed through ``extra={"session": {...}}`` are included under
    the ``"session"`` key.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "session"):
            log_entry["session"] = record.session
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "structured") -> None:
    """Configure the root logger.

    Parameters
    ----------
    level : str
        Minimum log level.  One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"structured"`` for the pipe-delimited text format, ``"json"`` for
        one JSON object per line.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=TEXT_FORMAT, datefmt=DATE_FORMAT, force=True)
    if fmt == "json":
        for handler in logging.getLogger().handlers:
            handler.setFormatter(StructuredFormatter())


class LogBuffer(logging.Handler):
    """Ring buffer of the most recent records under one logger.

    One instance per app, so two apps in the same process (tests, or the
    gateway next to the job service) never see each other's entries.
    """

    def __init__(self, maxlen: int = 500, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._entries: deque = deque(maxlen=maxlen)
        self._logger: Optional[logging.Logger] = None

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "session"):
            entry["session"] = record.session
        self._entries.append(entry)

    def attach(self, logger_name: str = "hostgate") -> None:
        """Start capturing records from *logger_name*; a second call is a no-op."""
        if self._logger is not None:
            return
        self._logger = logging.getLogger(logger_name)
        self._logger.addHandler(self)

    def detach(self) -> None:
        """Stop capturing and drop buffered entries."""
        if self._logger is not None:
            self._logger.removeHandler(self)
            self._logger = None
        self._entries.clear()

    def entries(self, last_n: Optional[int] = None) -> List[Dict[str, Any]]:
        items = list(self._entries)
        if last_n is not None:
            items = items[-last_n:]
        return items
