"""
Logging Configuration Module
Provides consistent logging across the application, with a per-request
correlation id attached to every log record.
"""

import contextvars
import logging
import sys
import uuid
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional

from table_migrator.config_manager import ConfigManager

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(request_log_id)s] - %(message)s'

_request_log_id: contextvars.ContextVar = contextvars.ContextVar('request_log_id', default=None)


class RequestLogIdFilter(logging.Filter):
    """Injects the current correlation id into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_log_id = _request_log_id.get() or '-'
        return True


def get_request_log_id() -> Optional[str]:
    """Get the correlation id bound to the current context."""
    return _request_log_id.get()


def set_request_log_id(request_log_id: Optional[str]) -> contextvars.Token:
    """Bind a correlation id to the current context. Returns a reset token."""
    return _request_log_id.set(request_log_id)


def reset_request_log_id(token: contextvars.Token) -> None:
    """Restore the correlation id that was bound before `set_request_log_id`."""
    _request_log_id.reset(token)


def new_request_log_id() -> str:
    """Generate a new correlation id."""
    return str(uuid.uuid4())


@contextmanager
def request_log_context(request_log_id: str = None) -> Generator[str, None, None]:
    """
    Bind a correlation id for the duration of a block.

    Usage:
        with request_log_context() as request_log_id:
            pipeline.migrate(request)
    """
    request_log_id = request_log_id or new_request_log_id()
    token = set_request_log_id(request_log_id)
    try:
        yield request_log_id
    finally:
        reset_request_log_id(token)


QUIET_LOGGERS = ('urllib3', 'requests', 'sqlalchemy.engine', 'google', 'apscheduler')


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RequestLogIdFilter())
    return handler


def setup_logging() -> None:
    """
    Route all log records to stdout and a rotating file, tagged with the
    request log id. Call once when a process starts.
    """
    log_config = ConfigManager().get_logging_config()

    level = getattr(logging, log_config.get('level', 'INFO').upper())
    formatter = logging.Formatter(log_config.get('format', DEFAULT_FORMAT))
    log_file = Path(log_config.get('file', './logs/table_migrator.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(_handler(logging.StreamHandler(sys.stdout), level, formatter))
    root.addHandler(_handler(
        RotatingFileHandler(
            log_file,
            maxBytes=log_config.get('max_bytes', 10 * 1024 * 1024),
            backupCount=log_config.get('backup_count', 5)
        ),
        level,
        formatter
    ))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; use with `__name__`."""
    return logging.getLogger(name)
