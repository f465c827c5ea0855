"""Loguru setup for ado-mirror.

Modules log through ``get_logger(__name__)``. The sync engine binds
project and work item context with ``bind_project``/``bind_work_item``;
the console sink prints that context after the logger name.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

    from ado_mirror.config import LoggingConfig

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

CONTEXT_KEYS = ("project", "work_item", "operation")
"""Bound extras shown on console lines, in this order."""

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} | {extra} | {message}"
)

# Third-party stdlib loggers: (level when verbose, level otherwise)
LIBRARY_LEVELS: dict[str, tuple[int, int]] = {
    "sqlalchemy.engine": (logging.INFO, logging.WARNING),
    "aiosqlite": (logging.INFO, logging.WARNING),
    "httpx": (logging.DEBUG, logging.WARNING),
    "httpcore": (logging.INFO, logging.WARNING),
}


class InterceptHandler(logging.Handler):
    """Forward stdlib log records (SQLAlchemy, httpx) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def resolve_level(level: LogLevel, *, verbose: bool = False, quiet: bool = False) -> LogLevel:
    """Apply the CLI flags to the configured level; --verbose beats --quiet."""
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def _console_format(record: Record) -> str:
    extra = record["extra"]
    name = "{extra[name]}" if "name" in extra else "{name}"
    context = "".join(f" {key}={{extra[{key}]}}" for key in CONTEXT_KEYS if key in extra)
    return (
        "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | "
        f"<cyan>{name}</cyan>{context} - <level>{{message}}</level>\n{{exception}}"
    )


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    config: LoggingConfig | None = None,
) -> Logger:
    """Install the console sink, the optional file sink, and stdlib interception.

    Args:
        level: Level from settings (LOG_LEVEL)
        verbose: --verbose flag, forces DEBUG
        quiet: --quiet flag, forces WARNING unless verbose is also set
        config: File sink settings; no file sink when absent or without log_file

    Returns:
        The configured loguru logger
    """
    effective = resolve_level(level, verbose=verbose, quiet=quiet)

    logger.remove()
    logger.add(sys.stderr, level=effective, format=_console_format, backtrace=True)

    if config is not None and config.log_file:
        # The file keeps everything, whatever the console shows
        logger.add(
            Path(config.log_file),
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="gz",
            serialize=config.serialize,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    chatty = effective in ("TRACE", "DEBUG")
    for name, (verbose_level, normal_level) in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(verbose_level if chatty else normal_level)

    return logger


def get_logger(name: str) -> Logger:
    """Logger with the module name bound, e.g. ``get_logger(__name__)``."""
    return logger.bind(name=name)


def bind_project(organization: str, project: str) -> Logger:
    """Logger carrying the ``organization/project`` a sync pass runs against."""
    return logger.bind(name="sync", project=f"{organization}/{project}")


def bind_work_item(work_item_id: int, *, operation: str | None = None) -> Logger:
    """Logger carrying one work item id and, optionally, the step touching it."""
    context: dict[str, Any] = {"work_item": work_item_id}
    if operation:
        context["operation"] = operation
    return logger.bind(name="sync", **context)


def reset_logging() -> None:
    """Drop every loguru sink (tests call this between runs)."""
    logger.remove()
