"""Configuration management for dbgateway.

Loads and validates the YAML key-value configuration with Pydantic
models. Environment variables can supply keys the file leaves unset.
"""

from dbgateway.config.settings import ConfigError, Settings, load_settings

__all__ = ["ConfigError", "Settings", "load_settings"]
