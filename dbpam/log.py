"""Logging configuration using structlog.

The result viewer owns the terminal, so log lines go to a file in the
config directory instead of stderr.
"""

import logging
from pathlib import Path
from typing import Any, TextIO

import structlog

_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def default_log_path() -> Path:
    return Path.home() / ".config" / "dbpam" / "pam.log"


class _LazyFileFactory:
    """Open the log file when the first logger is created, not at configure time."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._file: TextIO | None = None

    def __call__(self, *args: Any, **kwargs: Any) -> structlog.PrintLogger:
        if self._file is None or self._file.closed:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("a", encoding="utf-8")
        return structlog.PrintLogger(file=self._file)


def setup_logging(verbose: bool = False, path: Path | None = None) -> None:
    """Configure structlog for pam.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise INFO.
        path: Log file, defaults to ``~/.config/dbpam/pam.log``.
    """
    log_level = "debug" if verbose else "info"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS[log_level]),
        context_class=dict,
        logger_factory=_LazyFileFactory(path or default_log_path()),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger, optionally bound with a name.

    Call inside functions or __init__(), never at module level.
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger
