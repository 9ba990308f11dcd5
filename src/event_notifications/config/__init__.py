"""Configuration models, loading and configuration errors."""

from event_notifications.config.exceptions import (
    ConfigLoadError,
    ConfigurationError,
    ConfigValidationError,
    EnvironmentVariableError,
    InvalidEventTypeConfigError,
    UnknownEventTypeError,
)
from event_notifications.config.loader import (
    load_app_config,
    load_event_types,
    resolve_env_var,
    resolve_env_vars_in_dict,
)
from event_notifications.config.models import (
    AppConfig,
    EventTypeConfig,
    LoggingConfig,
    NotificationsConfig,
    ProvidersConfig,
    QueueConfig,
    RetryPolicyConfig,
    WebhookProviderConfig,
)

__all__ = [
    "AppConfig",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigurationError",
    "EnvironmentVariableError",
    "EventTypeConfig",
    "InvalidEventTypeConfigError",
    "LoggingConfig",
    "NotificationsConfig",
    "ProvidersConfig",
    "QueueConfig",
    "RetryPolicyConfig",
    "UnknownEventTypeError",
    "WebhookProviderConfig",
    "load_app_config",
    "load_event_types",
    "resolve_env_var",
    "resolve_env_vars_in_dict",
]
