"""Custom exceptions for configuration management."""


class ConfigError(Exception):
    """Raised when project configuration cannot be loaded or validated."""
