"""Configuration management for dbgateway.

Loads the gateway settings once at startup from a YAML key-value file,
with environment variable overrides for keys the file leaves unset.
The resulting ``Settings`` object is frozen and passed explicitly to the
application factory.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yml")

DEFAULT_MAX_BODY_BYTES = 10 << 20
DEFAULT_SCRIPT_TIMEOUT = 30.0


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded."""


class TimeoutConfig(BaseModel):
    """Connection-level timeouts, in seconds."""

    model_config = {"frozen": True}

    read_header: float = Field(default=5.0, gt=0)
    read: float = Field(default=30.0, gt=0)
    write: float = Field(default=60.0, gt=0)
    idle: float = Field(default=60.0, gt=0)


class LoggingConfig(BaseModel):
    model_config = {"frozen": True}

    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the gateway.

    Unknown keys from the YAML file are kept and can be read back with
    ``get``; they are never an error.
    """

    model_config = {
        "env_prefix": "DBGATEWAY_",
        "env_nested_delimiter": "__",
        "extra": "allow",
        "frozen": True,
        "coerce_numbers_to_str": True,
    }

    api_port: str = Field(default="")
    api_host: str = Field(default="0.0.0.0")
    cors_allowed_domains: str = Field(default="")
    api_base_url: str = Field(default="")

    cert_file: str = Field(default="fullchain.pem")
    key_file: str = Field(default="localhost.key")

    script_timeout: float = Field(default=DEFAULT_SCRIPT_TIMEOUT, gt=0)
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get(self, key: str) -> str:
        """Return the value for ``key`` as a string, or "" if there is none.

        Only scalar strings and numbers have a string value; anything
        else (missing keys, booleans, nested sections, lists) reads as "".
        """
        if key in type(self).model_fields:
            value = getattr(self, key)
        else:
            value = (self.model_extra or {}).get(key)
        if isinstance(value, bool):
            return ""
        if isinstance(value, (str, int, float)):
            return str(value)
        return ""

    def index_base_url(self) -> str:
        """Base URL the index page links routes under."""
        base = self.api_base_url or f"https://localhost:{self.api_port}/"
        if not base.endswith("/"):
            base += "/"
        return base


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from a YAML file plus environment variables.

    Priority: YAML file > env vars > defaults

    Raises:
        ConfigError: If the file is missing, unreadable, not a YAML
            mapping, or holds values that fail validation.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        with open(path) as f:
            yaml_data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e

    if yaml_data is None:
        yaml_data = {}
    if not isinstance(yaml_data, dict):
        raise ConfigError(
            f"Config file {path} must hold a key-value mapping, "
            f"got {type(yaml_data).__name__}"
        )

    try:
        settings = Settings(**{str(k): v for k, v in yaml_data.items()})
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    logger.info("Loaded configuration from %s", path)
    return settings
