"""
Logging utilities for changepoint-jax.

Every module logs through a ``ChangepointJaxLogger`` obtained from
``get_logger``. Messages take keyword context which is appended as
``key=value`` pairs, e.g. ``Compiled segmented model | family=gaussian``.
Handlers are attached lazily from the ``logging`` section of the active
configuration and the loggers do not propagate to the root logger.
"""

import functools
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config.settings import get_default_config, LogLevel


class LevelColorFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI colour."""

    PALETTE = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.PALETTE.get(record.levelno)
        if color is None:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers see the same record
            record.levelname = plain


def format_context(message: str, context: Dict[str, Any]) -> str:
    """Append ``key=value`` context to a message."""
    if not context:
        return message
    pairs = " ".join(f"{key}={value}" for key, value in context.items())
    return f"{message} | {pairs}"


class ChangepointJaxLogger:
    """
    Named logger accepting keyword context.

    Args:
        name: Name of the underlying ``logging.Logger``
        config: Configuration to read the logging section from; the
            process default is used when omitted
    """

    def __init__(self, name: str, config=None):
        self.name = name
        self._config = config
        self.logger = logging.getLogger(name)
        self._ready = False

    @property
    def config(self):
        return self._config or get_default_config()

    def reset(self) -> None:
        """Rebuild handlers from the configuration on the next message."""
        self._ready = False

    def _attach_handlers(self) -> None:
        settings = self.config.logging
        level = getattr(settings.level, "value", settings.level)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        if settings.console_logging:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(LevelColorFormatter(settings.format_string))
            self.logger.addHandler(console)

        if settings.file_logging and settings.log_file:
            log_file = Path(settings.log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(settings.format_string))
            self.logger.addHandler(file_handler)

        self._ready = True

    def log(self, level: int, message: str, exc_info: bool = False, **context) -> None:
        """Log ``message`` at a numeric level with keyword context."""
        if not self._ready:
            self._attach_handlers()
        if self.logger.isEnabledFor(level):
            self.logger.log(level, format_context(message, context), exc_info=exc_info)

    def debug(self, message: str, **context) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self.log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self.log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self.log(logging.ERROR, message, **context)

    def exception(self, message: str, **context) -> None:
        """Log at error level with the active traceback."""
        self.log(logging.ERROR, message, exc_info=True, **context)


_loggers: Dict[str, ChangepointJaxLogger] = {}


def get_logger(name: str = "changepoint_jax") -> ChangepointJaxLogger:
    """
    Get the shared logger for ``name``.

    Args:
        name: Logger name, usually ``__name__`` or a class name

    Returns:
        The cached ChangepointJaxLogger for that name
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers[name] = ChangepointJaxLogger(name)
    return logger


def setup_logging(
    level: Optional[Union[str, LogLevel]] = None,
    console: Optional[bool] = None,
    file_path: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None,
) -> None:
    """
    Change the logging section of the default configuration.

    Loggers already handed out pick the new settings up with their next
    message.

    Args:
        level: Minimum level, e.g. "DEBUG"
        console: Whether to log to stdout
        file_path: Also log to this file
        format_string: ``logging`` format string for all handlers
    """
    settings = get_default_config().logging

    if level is not None:
        settings.level = LogLevel(level.upper()) if isinstance(level, str) else level
    if console is not None:
        settings.console_logging = console
    if file_path is not None:
        settings.file_logging = True
        settings.log_file = Path(file_path)
    if format_string is not None:
        settings.format_string = format_string

    for logger in _loggers.values():
        logger.reset()


def log_function_call(func):
    """Log entry, exit and failure of ``func`` at the module's logger."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}", error=type(e).__name__)
            raise
        logger.debug(f"Completed {func.__name__}")
        return result

    return wrapper
