"""Configuration error hierarchy.

Configuration errors are fatal: they are raised to the caller immediately and
never retried. Unknown event types and event types without channels are
configuration errors too, raised by the emitter before any job is created.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Base exception for all configuration-related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:  # pyright: ignore[reportExplicitAny]
        """Initialize ConfigurationError.

        Args:
            message: Error message
            context: Additional context information for debugging
        """
        super().__init__(message)
        self.context: dict[str, Any] = context or {}  # pyright: ignore[reportExplicitAny]


class UnknownEventTypeError(ConfigurationError):
    """Raised when no configuration exists for an emitted event type."""

    def __init__(self, event_type: str) -> None:
        super().__init__(
            f"Event type '{event_type}' is not configured",
            context={"event_type": event_type},
        )
        self.event_type: str = event_type


class InvalidEventTypeConfigError(ConfigurationError):
    """Raised when an event type configuration cannot be used for emission."""

    def __init__(self, event_type: str, reason: str) -> None:
        super().__init__(
            f"Event type '{event_type}' is invalid: {reason}",
            context={"event_type": event_type, "reason": reason},
        )
        self.event_type: str = event_type
        self.reason: str = reason


class ConfigLoadError(ConfigurationError):
    """Raised when a configuration file cannot be read or parsed."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        context: dict[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
    ) -> None:
        full_context = context or {}
        if file_path is not None:
            full_context["file_path"] = file_path
        super().__init__(message, full_context)
        self.file_path: str | None = file_path


class ConfigValidationError(ConfigurationError):
    """Raised when configuration data fails schema validation."""

    def __init__(
        self,
        message: str,
        pydantic_error: ValidationError | None = None,
        context: dict[str, Any] | None = None,  # pyright: ignore[reportExplicitAny]
    ) -> None:
        full_context = context or {}
        if pydantic_error is not None:
            full_context["validation_errors"] = format_validation_errors(pydantic_error)
        super().__init__(message, full_context)
        self.pydantic_error: ValidationError | None = pydantic_error


class EnvironmentVariableError(ConfigurationError):
    """Raised when a ``${VAR}`` reference names an unset environment variable."""

    def __init__(self, var_name: str) -> None:
        super().__init__(
            f"Required environment variable '{var_name}' is not set. "
            "Please set this variable before starting the application.",
            context={"env_var": var_name},
        )
        self.var_name: str = var_name


def format_validation_errors(error: ValidationError) -> list[dict[str, object]]:
    """Flatten Pydantic validation errors into readable dictionaries."""
    return [
        {
            "field": ".".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in error.errors()
    ]


def suggest_config_fix(error: ConfigurationError) -> str | None:
    """Suggest a fix for a configuration error, if one is known."""
    if isinstance(error, UnknownEventTypeError):
        return f"Add an '{error.event_type}' entry under 'event_types' in the configuration file"

    if isinstance(error, InvalidEventTypeConfigError):
        return f"Configure at least one channel for event type '{error.event_type}'"

    if isinstance(error, EnvironmentVariableError):
        return f"Export {error.var_name} before starting the application"

    if isinstance(error, ConfigLoadError):
        if error.file_path:
            return f"Check that the file exists and is readable: {error.file_path}"
        return "Check that the configuration file exists and is readable"

    if isinstance(error, ConfigValidationError) and error.pydantic_error:
        errors = error.pydantic_error.errors()
        if len(errors) == 1:
            field_path = ".".join(str(loc) for loc in errors[0]["loc"])
            return f"Fix validation error in field '{field_path}': {errors[0]['msg']}"
        return f"Fix {len(errors)} validation errors in the configuration"

    return None


def log_config_error(error: ConfigurationError, level: int = logging.WARNING) -> None:
    """Log a configuration error together with its context."""
    message = str(error)
    if error.context:
        context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())  # pyright: ignore[reportAny]
        message = f"{message} (context: {context_str})"
    logger.log(level, message)
