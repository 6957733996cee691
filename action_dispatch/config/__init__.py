"""Configuration module."""

from .settings import Settings, ConfigurationError

__all__ = ["Settings", "ConfigurationError"]
