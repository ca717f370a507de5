"""
Logging setup for gpsmeter.

- pretty console output via Rich
- optional structured (JSON lines) file output
"""

from __future__ import annotations

import json
import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """Formatter that serializes log records to JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def setup_logging(config: LoggingConfig | None = None, console: Console | None = None) -> None:
    """
    Configure the root logger once per process.

    Calling it again replaces the handlers it installed before, so the CLI
    can re-apply a level loaded from the config file.
    """
    config = config or LoggingConfig()
    root = logging.getLogger()
    root.setLevel(config.level)

    for handler in list(root.handlers):
        if getattr(handler, "_gpsmeter", False):
            root.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    console_handler.setLevel(config.level)
    console_handler._gpsmeter = True  # type: ignore[attr-defined]
    root.addHandler(console_handler)

    if config.file:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.file, mode="a", encoding="utf-8")
        file_handler.setLevel(config.level)
        file_handler.setFormatter(JSONFormatter())
        file_handler._gpsmeter = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    # aiosqlite logs every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(max(logging.INFO, root.level))
