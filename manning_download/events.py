"""
Progress events for the downloader.

Every component reports through an ``EventSink``. The sink sits on top of
the standard ``logging`` module: the console gets a RichHandler, and an
optional JSON-lines file keeps one ``{timestamp, level, message, data}``
object per event.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "manning_download"

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


class EventSink:
    """Leveled progress events with an optional structured payload."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(LOGGER_NAME)

    def _emit(self, level: int, message: str, payload: dict) -> None:
        self._logger.log(level, message, extra={"payload": payload})

    def info(self, message: str, **payload) -> None:
        self._emit(logging.INFO, message, payload)

    def success(self, message: str, **payload) -> None:
        self._emit(SUCCESS, message, payload)

    def warning(self, message: str, **payload) -> None:
        self._emit(logging.WARNING, message, payload)

    def error(self, message: str, **payload) -> None:
        self._emit(logging.ERROR, message, payload)

    def debug(self, message: str, **payload) -> None:
        self._emit(logging.DEBUG, message, payload)


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "data": getattr(record, "payload", None) or None,
        }
        return json.dumps(entry, default=str)


def configure_logging(
    console: Optional[Console] = None,
    log_directory: Optional[Path] = None,
    verbose: bool = False,
) -> EventSink:
    """Attach console (and file) handlers to the package logger and return a sink."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Titles often contain brackets, so rich markup stays off.
    logger.addHandler(
        RichHandler(
            console=console or Console(),
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
    )

    if log_directory is not None:
        log_directory = Path(log_directory)
        log_directory.mkdir(parents=True, exist_ok=True)
        log_file = log_directory / f"download-{datetime.now():%Y-%m-%d}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JsonLinesFormatter())
        logger.addHandler(file_handler)

    return EventSink(logger)
