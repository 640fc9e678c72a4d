# catsync Logging
# Central logging configuration with rich console output and contextual fields

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context)s"

# Third-party loggers kept quiet unless debugging
_NOISY_LOGGERS = ("urllib3", "requests")


class ContextFilter(logging.Filter):
    """Adds the active log context to records as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        record.context = (" [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]") if ctx else ""
        return True


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Temporarily add context fields to all log messages.

    Fields are merged with any existing context and restored on exit.
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Optional[str] = None,
    file_level: str = "INFO",
    colored: bool = True,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the ``catsync`` logger hierarchy.

    Console output goes through a rich handler (WARNING and up, or DEBUG
    when verbose). An optional file handler records at ``file_level``.
    Calling it again replaces the handlers.

    Args:
        verbose: Show debug output on the console.
        log_file: Optional path of a log file.
        file_level: Level name for the file handler.
        colored: Enable colored console output.
        console: Rich console to log to. Defaults to stderr.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("catsync")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    context_filter = ContextFilter()

    console_handler = RichHandler(
        console=console or Console(stderr=True, no_color=not colored),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(message)s%(context)s"))
    console_handler.addFilter(context_filter)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.INFO))
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(context_filter)
        logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger
