"""Configuration exceptions."""

from typing import Optional


class ConfigError(Exception):
    """Base exception for configuration loading failures."""


class ConfigValidationError(ConfigError):
    """Raised when a loaded configuration is inconsistent.

    Attributes:
        section: Top-level config section the problem was found in, if known
    """

    def __init__(self, message: str, section: Optional[str] = None):
        super().__init__(message)
        self.section = section


class ConfigFileError(ConfigError):
    """Raised when a config file exists but cannot be read."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path
