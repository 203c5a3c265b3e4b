"""
Logging Module - Rich console logging for the engine.
=====================================================

One place configures the root logger for cache, index, sync and search
components. Rich output is used for terminals; a plain stream handler and an
optional log file are available for background workers.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from campusfy.shared.config import Settings

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = (
    "urllib3",
    "requests",
    "sentence_transformers",
    "transformers",
    "torch",
)

_logging_configured = False
_console = Console(stderr=True)


def setup_logging(
    level: str = "INFO",
    use_rich: bool = True,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure logging for the engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_rich: Use the Rich console handler instead of a plain stream
        log_file: Optional path to a log file
        log_format: Format for plain and file handlers

    Note:
        Only the first call has an effect. Use reset_logging() to
        reconfigure.
    """
    global _logging_configured

    if _logging_configured:
        return

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    log_format = log_format or DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if use_rich:
        handler: logging.Handler = RichHandler(
            console=_console,
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(log_format))
    handler.setLevel(numeric_level)
    root_logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_configured = True

    logging.getLogger(__name__).debug(
        f"Logging configured: level={level}, rich={use_rich}, file={log_file}"
    )


def configure_from_settings(settings: "Settings") -> None:
    """Configure logging from the logging section of the settings."""
    setup_logging(
        level=settings.get_effective_log_level(),
        use_rich=settings.logging.rich_console,
        log_file=settings.logging.file or None,
        log_format=settings.logging.format,
    )


def reset_logging() -> None:
    """Forget the current configuration so setup_logging() runs again."""
    global _logging_configured
    _logging_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Cold load started")
    """
    if not _logging_configured:
        setup_logging()

    return logging.getLogger(name)


def get_console() -> Console:
    """Get the shared Rich console."""
    return _console


class LogContext:
    """
    Context manager for temporary log level changes.

    Root handlers that would drop records below the new level are lowered
    too while the context is active. A level of None changes nothing, which
    lets callers write `with LogContext("DEBUG" if verbose else None, ...)`.

    Example:
        >>> with LogContext("DEBUG", "campusfy.sync"):
        ...     await coordinator.check_and_load("wisco")
    """

    def __init__(self, level: Optional[str], logger_name: Optional[str] = None):
        self.level = getattr(logging, level.upper(), logging.INFO) if level else None
        self.logger_name = logger_name
        self.original_level: Optional[int] = None
        self._handler_levels: list[tuple[logging.Handler, int]] = []

    def __enter__(self) -> "LogContext":
        if self.level is None:
            return self
        logger = logging.getLogger(self.logger_name)
        self.original_level = logger.level
        logger.setLevel(self.level)
        for handler in logging.getLogger().handlers:
            if handler.level > self.level:
                self._handler_levels.append((handler, handler.level))
                handler.setLevel(self.level)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        for handler, level in self._handler_levels:
            handler.setLevel(level)
        self._handler_levels.clear()
        if self.original_level is not None:
            logging.getLogger(self.logger_name).setLevel(self.original_level)
            self.original_level = None
