"""Logging setup for termdeck processes.

Log files live under {data_dir}/logs/:
- {process}.log, rotated at midnight (14 days kept)
- {process}-current.log, rotated at 5MB (5 kept)

`termdeck run` owns the terminal, so it logs to files only. Other commands
may also log to stderr. Modules just do:

    logger = get_logger(__name__)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler

from .config import data_dir, get_setting

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("watchfiles", "asyncio")


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _formatter(process_name: str, datefmt: str) -> logging.Formatter:
    return logging.Formatter(
        fmt=f"[%(asctime)s] [{process_name}] [%(levelname)s] %(name)s: %(message)s",
        datefmt=datefmt,
    )


def resolve_level(level: int | str | None = None) -> int:
    """Numeric log level from an explicit value or the `log_level` setting.

    Unknown names fall back to INFO.
    """
    if level is None:
        level = get_setting("log_level")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_process_logging(
    process_name: str,
    level: int | str | None = None,
    console: bool = True,
    file: bool = True,
) -> logging.Logger:
    """
    Configure the root logger for one termdeck process. Call once at startup.

    Args:
        process_name: Used in the log format and file names (e.g. "run")
        level: Minimum level; defaults to the `log_level` setting
        console: Whether to log to stderr
        file: Whether to log to rotating files in the data dir

    Returns:
        The root logger
    """
    level = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if console:
        console_handler = FlushingStreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(_formatter(process_name, "%H:%M:%S"))
        root.addHandler(console_handler)

    if file:
        log_dir = data_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        file_fmt = _formatter(process_name, "%Y-%m-%d %H:%M:%S")

        daily_handler = TimedRotatingFileHandler(
            log_dir / f"{process_name}.log",
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        daily_handler.suffix = "%Y-%m-%d"
        size_handler = RotatingFileHandler(
            log_dir / f"{process_name}-current.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        for handler in (daily_handler, size_handler):
            handler.setLevel(level)
            handler.setFormatter(file_fmt)
            root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; picks up whatever setup_process_logging() installed."""
    return logging.getLogger(name)
