"""
Configuration loader.

App config: reads config.yaml, environment variables override file values.
"""

from config.loader import (
    AppConfig,
    ConfigError,
    ExportConfig,
    LedgerConfig,
    LoggingConfig,
    ServerConfig,
    load_config,
)

__all__ = [
    "AppConfig",
    "ConfigError",
    "ExportConfig",
    "LedgerConfig",
    "LoggingConfig",
    "ServerConfig",
    "load_config",
]
