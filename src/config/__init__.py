"""Configuration module."""

from .config_loader import Config, ConfigLoader
from .exceptions import ConfigError, ConfigFileError, ConfigValidationError

__all__ = [
    "ConfigLoader",
    "Config",
    "ConfigError",
    "ConfigValidationError",
    "ConfigFileError",
]
