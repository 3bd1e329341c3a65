"""
Base configuration for flutter-sim-mcp.

Settings are read from environment variables (case-sensitive), optionally
preceded by a .env file named by LOAD_ENV_FILE.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

T = TypeVar('T', bound='FlutterSimSettings')

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class FlutterSimSettings(pydantic_settings.BaseSettings):
    """Shared configuration for the server and CLI."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='forbid',  # Reject unknown environment variables
    )

    # Application metadata
    APP_NAME: str = 'flutter-sim-mcp'
    VERSION: str = '0.1.0'

    # HTTP transport
    HOST: str = '0.0.0.0'
    PORT: int = 3000

    LOG_LEVEL: str = 'INFO'

    # Project paths must resolve inside this directory
    ALLOWED_PATH_PREFIX: str = '/Users/'

    # Simulator and flutter defaults
    DEFAULT_DEVICE_TYPE: str = 'iPhone 16 Pro'
    FLUTTER_COMMAND: str = 'flutter'
    MAX_LOG_LINES: int = 1000
    STOP_TIMEOUT_SECONDS: float = 5.0
    RELOAD_SETTLE_SECONDS: float = 1.0
    DEFAULT_TEST_TIMEOUT_MINUTES: float = 10

    @pydantic.field_validator('PORT', 'MAX_LOG_LINES')
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError('must be positive')
        return v

    @pydantic.field_validator('STOP_TIMEOUT_SECONDS', 'RELOAD_SETTLE_SECONDS', 'DEFAULT_TEST_TIMEOUT_MINUTES')
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError('must be positive')
        return v

    @pydantic.field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize to upper case; only the standard level names are accepted."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f'LOG_LEVEL must be one of {", ".join(LOG_LEVELS)}')
        return level

    @pydantic.field_validator('ALLOWED_PATH_PREFIX', 'FLUTTER_COMMAND', 'DEFAULT_DEVICE_TYPE')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must not be empty')
        return v


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Factory for creating settings with dynamic .env file loading.

    LOAD_ENV_FILE environment variable specifies custom .env file path.
    When unset, loads from environment variables only.

    Args:
        settings_class: Settings class to instantiate
        env_file: Optional path to .env file (overrides LOAD_ENV_FILE)

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If specified .env file doesn't exist
    """
    env_file_path = env_file or os.getenv('LOAD_ENV_FILE')

    if not env_file_path:
        return settings_class()

    resolved_path = pathlib.Path(env_file_path).resolve()
    if not resolved_path.exists():
        raise FileNotFoundError(f'Environment file not found: {resolved_path}')

    return settings_class(_env_file=resolved_path)


def lazy_settings(settings_class: type[T]) -> T:
    """Proxy that instantiates settings on first attribute access."""
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))
