"""Structured logging with correlation ID tracking and secret redaction.

Every emitted event carries a correlation id. The id is stored in a
ContextVar so that it is inherited by the asyncio tasks fanning an event out
to its channels, and a logging filter stamps it onto each record. A second
filter redacts secrets from messages, arguments and ``extra`` fields.
"""

import contextvars
import logging
import logging.handlers
import sys
from collections.abc import Mapping
from typing import Final, TextIO, override

from event_notifications.utils.sanitization import (
    sanitize_args,
    sanitize_value,
)

# Correlation ID context variable; inherited by asyncio tasks created in the same context
correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

SYSLOG_LOG_FORMAT: Final[str] = (
    "event-notifications[%(process)d]: %(levelname)s - [%(correlation_id)s] - %(name)s - %(message)s"
)

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"

# LogRecord attributes that are never sanitized
_STANDARD_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
    }
)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds the current correlation ID to log records."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = correlation_id_var.get()
        record.correlation_id = correlation_id if correlation_id is not None else "N/A"
        return True


class SecretRedactingFilter(logging.Filter):
    """Logging filter that redacts sensitive information from log records.

    Sanitizes the message text, the ``%`` formatting arguments and every
    non-standard attribute added through ``extra={...}``.
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            sanitized_msg = sanitize_value(record.msg)
            if isinstance(sanitized_msg, str):
                record.msg = sanitized_msg

        if record.args and isinstance(record.args, tuple):
            record.args = sanitize_args(record.args)

        for attr_name in list(record.__dict__.keys()):
            if attr_name in _STANDARD_RECORD_ATTRS or attr_name.startswith("_"):
                continue
            attr_value: object = getattr(record, attr_name)  # pyright: ignore[reportAny]
            setattr(record, attr_name, sanitize_value(attr_value, field_name=attr_name))

        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = False,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure root logging with correlation ids and secret redaction.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_syslog: Attach a syslog handler
        syslog_address: Syslog socket address
        enable_console: Attach a console handler
        stream: Console stream; stdout when omitted

    Example:
        >>> configure_logging(log_level="DEBUG")
        >>> set_correlation_id("corr-123")
        >>> logging.getLogger(__name__).info("Event queued", extra={"event_type": "user.welcome"})
    """
    root_logger = logging.getLogger()
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    correlation_filter = CorrelationIDFilter()
    secret_filter = SecretRedactingFilter()

    if enable_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(correlation_filter)
            syslog_handler.addFilter(secret_filter)
            root_logger.addHandler(syslog_handler)
        except OSError as exc:
            # Syslog not available (e.g., containers, development machines)
            print(
                f"Warning: Could not connect to syslog at {syslog_address}: {exc}",
                file=sys.stderr,
            )

    if enable_console:
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(correlation_filter)
        console_handler.addFilter(secret_filter)
        root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified module."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> contextvars.Token[str | None]:
    """Set the correlation ID for the current context.

    Returns:
        Token that can be passed to :func:`reset_correlation_id`
    """
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token[str | None]) -> None:
    """Restore the correlation ID that was active before ``set_correlation_id``."""
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from the current context."""
    _ = correlation_id_var.set(None)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    extra: Mapping[str, object] | None = None,
) -> None:
    """Log a message with additional structured context fields.

    The current correlation ID, when set, is added to the context.

    Example:
        >>> log_with_context(
        ...     get_logger(__name__),
        ...     logging.INFO,
        ...     "Channel delivery succeeded",
        ...     extra={"channel": "email", "provider": "smtp", "attempts": 2},
        ... )
    """
    context = dict(extra) if extra else {}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    logger.log(level, message, extra=context)
