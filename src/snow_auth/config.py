"""Configuration management for snow-auth.

Provides configuration loading from environment variables, .env files,
and optional configuration files with proper precedence handling.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SNOW_AUTH_"


class ConfigError(Exception):
    """Raised when configuration validation fails."""


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def default_store_path() -> Path:
    """Return the default credential store location.

    Honors XDG_DATA_HOME, falling back to ~/.local/share.
    """
    data_home = os.environ.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / "snow-auth" / "auth.json"


class Config(BaseModel):
    """Configuration model for snow-auth.

    Configuration can be loaded from:
    - Environment variables with SNOW_AUTH_ prefix
    - Optional .env file in the working directory
    - Optional configuration file passed via CLI
    """

    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Logging level")

    # Local callback listener
    callback_host: str = Field(
        default="127.0.0.1", description="Loopback address the callback listener binds"
    )
    callback_port: int = Field(
        default=3005, ge=1, le=65535, description="Fixed callback listener port"
    )
    callback_path: str = Field(default="/callback", description="Callback route path")
    callback_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Seconds to wait for the browser redirect"
    )
    open_browser: bool = Field(
        default=True, description="Launch the system browser at the authorization URL"
    )

    # Token endpoint
    http_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for token endpoint requests"
    )
    rate_limit_max_requests: int = Field(
        default=10, ge=1, description="Max token endpoint calls per window"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0, gt=0, description="Token endpoint rate limit window"
    )

    # Credential storage
    store_path: Path = Field(
        default_factory=default_store_path, description="Credential store file"
    )

    model_config = {
        "validate_assignment": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("callback_path", mode="before")
    @classmethod
    def normalize_callback_path(cls, v: Any) -> Any:
        """Ensure the callback path starts with a slash."""
        if isinstance(v, str) and not v.startswith("/"):
            return f"/{v}"
        return v

    @field_validator("store_path", mode="before")
    @classmethod
    def expand_store_path(cls, v: Any) -> Any:
        """Expand ~ in the store path."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def validate_callback_host(self) -> Config:
        """Only loopback addresses may receive the authorization code."""
        if self.callback_host not in ("127.0.0.1", "localhost", "::1"):
            msg = f"callback_host must be a loopback address, got {self.callback_host}"
            raise ValueError(msg)
        return self

    @property
    def redirect_uri(self) -> str:
        """Redirect URI sent in both the authorization and token requests."""
        return f"http://localhost:{self.callback_port}{self.callback_path}"


_INT_FIELDS = ("callback_port", "rate_limit_max_requests")
_FLOAT_FIELDS = (
    "callback_timeout_seconds",
    "http_timeout_seconds",
    "rate_limit_window_seconds",
)


def _get_env_value(key: str, prefix: str = ENV_PREFIX) -> str | None:
    """Get environment variable value with prefix."""
    return os.environ.get(f"{prefix}{key.upper()}")


def _load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}
    for field_name in Config.model_fields:
        value: Any = _get_env_value(field_name)
        if value is None:
            continue
        if value.lower() in ("true", "false", "yes", "no"):
            value = value.lower() in ("true", "yes")
        elif field_name in _INT_FIELDS:
            with contextlib.suppress(ValueError):
                value = int(value)
        elif field_name in _FLOAT_FIELDS:
            with contextlib.suppress(ValueError):
                value = float(value)
        config[field_name] = value

    return config


def _load_file_config(path: str | Path) -> dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    path = Path(path)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)

    suffix = path.suffix.lower()
    content = path.read_text()

    if suffix == ".json":
        return dict(json.loads(content))

    if suffix in (".yaml", ".yml"):
        import yaml

        return dict(yaml.safe_load(content) or {})

    msg = f"Unsupported configuration file format: {suffix}"
    raise ConfigError(msg)


def load_config(
    path: str | Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Configuration file
    4. Model defaults

    Args:
        path: Optional path to configuration file
        cli_args: Optional CLI argument overrides

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If configuration is invalid
    """
    load_dotenv()

    config_dict: dict[str, Any] = {}
    if path:
        logger.debug("Loading configuration from file: %s", path)
        config_dict.update(_load_file_config(path))

    for key, value in _load_env_config().items():
        config_dict[key] = value
        logger.debug("Config %s from environment: %s", key, value)

    if cli_args:
        for key, value in cli_args.items():
            if value is not None:
                config_dict[key] = value
                logger.debug("Config %s from CLI: %s", key, value)

    try:
        return Config(**config_dict)
    except Exception as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e
