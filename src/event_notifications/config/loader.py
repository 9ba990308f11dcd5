"""YAML configuration loading with environment variable resolution.

The configuration file is read once at startup. String values may reference
environment variables as ``${VARIABLE_NAME}``; references are resolved before
Pydantic validation so secrets never have to live in the file itself.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Final

import yaml
from pydantic import ValidationError

from event_notifications.config.exceptions import (
    ConfigLoadError,
    ConfigValidationError,
    EnvironmentVariableError,
)
from event_notifications.config.models import AppConfig, EventTypeConfig

ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def resolve_env_var(value: str) -> str:
    """Resolve environment variable references in a string value.

    Raises:
        EnvironmentVariableError: If a referenced variable is not set

    Examples:
        >>> os.environ["TEST_VAR"] = "secret_value"
        >>> resolve_env_var("prefix_${TEST_VAR}_suffix")
        'prefix_secret_value_suffix'
        >>> resolve_env_var("no variables here")
        'no variables here'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise EnvironmentVariableError(var_name)
        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _resolve_item(value: object) -> object:
    if isinstance(value, str):
        return resolve_env_var(value)
    if isinstance(value, dict):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return resolve_env_vars_in_dict(value)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(value, list):
        return [_resolve_item(item) for item in value]  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
    return value


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in a dictionary.

    Nested dictionaries and lists are traversed; non-string values are
    preserved as-is.

    Examples:
        >>> os.environ["SECRET"] = "my_secret"
        >>> resolve_env_vars_in_dict({"nested": {"key": "${SECRET}"}})
        {'nested': {'key': 'my_secret'}}
    """
    return {key: _resolve_item(value) for key, value in data.items()}


def _read_yaml_mapping(config_path: Path) -> dict[str, object]:
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            "Please create a configuration file at this location."
        )
        raise ConfigLoadError(msg, file_path=str(config_path))

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            "Please check the file for syntax errors."
        )
        raise ConfigLoadError(msg, file_path=str(config_path)) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigLoadError(msg, file_path=str(config_path)) from e

    # An empty file means "all defaults"
    if raw_data is None:
        return {}

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}"
        )
        raise ConfigLoadError(msg, file_path=str(config_path))

    return raw_data  # pyright: ignore[reportUnknownVariableType]  # YAML boundary


def _format_validation_message(error: ValidationError, config_path: Path) -> str:
    error_lines = ["Configuration validation failed:", ""]
    for err in error.errors():
        field_path = " → ".join(str(loc) for loc in err["loc"])
        error_lines.append(f"  Field: {field_path}")
        error_lines.append(f"  Error: {err['msg']}")
        error_lines.append(f"  Type: {err['type']}")
        error_lines.append("")
    error_lines.append(f"Configuration file: {config_path}")
    error_lines.append("Please fix the above errors and try again.")
    return "\n".join(error_lines)


def load_app_config(config_path: Path) -> AppConfig:
    """Load and validate the application configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not a mapping
        EnvironmentVariableError: If a referenced environment variable is missing
        ConfigValidationError: If the data does not match the schema
    """
    raw_data = _read_yaml_mapping(config_path)
    resolved_data = resolve_env_vars_in_dict(raw_data)

    try:
        return AppConfig.model_validate(resolved_data)
    except ValidationError as e:
        raise ConfigValidationError(
            _format_validation_message(e, config_path),
            pydantic_error=e,
            context={"file_path": str(config_path)},
        ) from e


def load_event_types(config_path: Path) -> dict[str, EventTypeConfig]:
    """Load only the event type map from a configuration file."""
    return dict(load_app_config(config_path).event_types)
