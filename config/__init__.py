"""
Configuration package.

Provides the environment-backed application configuration shared by the
core and the desktop shell.
"""
from .base import AppConfiguration, ConfigurationError

__all__ = [
    'AppConfiguration',
    'ConfigurationError',
]
