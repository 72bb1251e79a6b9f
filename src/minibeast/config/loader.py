"""Server settings loader.

Settings resolve with the priority: explicit overrides (CLI flags) >
environment variables (optionally from a ``.env`` file) > defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from minibeast.config.defaults import DEFAULT_SERVER_CONFIG
from minibeast.config.validator import flatten_pydantic_errors
from minibeast.lib.errors import ConfigError
from minibeast.models.config import ServerSettings

logger = logging.getLogger(__name__)

# Environment variable to field name mapping
ENV_VAR_MAP = {
    "host": "MINIBEAST_HOST",
    "port": "MINIBEAST_PORT",
    "data_dir": "MINIBEAST_DATA_DIR",
    "upload_dir": "MINIBEAST_UPLOAD_DIR",
    "cors_origins": "MINIBEAST_CORS_ORIGINS",
    "debug": "MINIBEAST_DEBUG",
}


def _parse_env_value(field_name: str, value: str) -> Any:
    """Parse environment variable value to appropriate type.

    Args:
        field_name: Name of the field (used to determine type)
        value: String value from environment variable

    Returns:
        Parsed value in correct type

    Raises:
        ValueError: If value cannot be parsed
    """
    if field_name == "port":
        return int(value)
    if field_name == "debug":
        return value.lower() in ("true", "1", "yes", "on")
    return value


def _get_env_value(
    field_name: str, env_vars: os._Environ[str] | dict[str, str]
) -> Any | None:
    """Get environment variable value for a field.

    Args:
        field_name: Name of field to get
        env_vars: Environment variables mapping

    Returns:
        Parsed value or None if not found or invalid
    """
    env_var_name = ENV_VAR_MAP.get(field_name)
    if not env_var_name or env_var_name not in env_vars:
        return None

    try:
        return _parse_env_value(field_name, env_vars[env_var_name])
    except ValueError:
        logger.warning(
            f"Ignoring invalid value for {env_var_name}: {env_vars[env_var_name]!r}"
        )
        return None


def load_settings(
    overrides: dict[str, Any] | None = None,
    env_file: str | Path | None = None,
    env_vars: dict[str, str] | None = None,
) -> ServerSettings:
    """Load server settings from overrides, environment and defaults.

    Args:
        overrides: Explicit values (e.g. CLI flags); ``None`` entries are ignored
        env_file: Optional ``.env`` file to load before reading the environment
        env_vars: Environment mapping to read instead of ``os.environ``

    Returns:
        Validated ServerSettings

    Raises:
        ConfigError: If the resolved values do not validate
    """
    if env_vars is None:
        load_dotenv(dotenv_path=env_file, override=False)
        source: os._Environ[str] | dict[str, str] = os.environ
    else:
        source = env_vars

    resolved: dict[str, Any] = dict(DEFAULT_SERVER_CONFIG)
    for field in ENV_VAR_MAP:
        if (env_value := _get_env_value(field, source)) is not None:
            resolved[field] = env_value

    for field, value in (overrides or {}).items():
        if value is not None:
            resolved[field] = value

    # Uploads follow the data directory unless set explicitly
    explicit_upload = (overrides or {}).get("upload_dir") is not None
    if not explicit_upload and ENV_VAR_MAP["upload_dir"] not in source:
        resolved["upload_dir"] = str(Path(str(resolved["data_dir"])) / "uploads")

    try:
        settings = ServerSettings(**resolved)
    except PydanticValidationError as exc:
        messages = flatten_pydantic_errors(exc)
        raise ConfigError("server", "; ".join(messages)) from exc

    logger.debug(f"Resolved server settings: {settings.model_dump(mode='json')}")
    return settings
