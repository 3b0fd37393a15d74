"""BrAPI Importer configuration module.

This module provides TOML-based configuration with environment variable overrides.

Configuration is loaded from the following locations (in order of priority):
1. Environment variables (highest priority)
2. ./config.toml (project root - for development)
3. ~/.config/brapi-importer/config.toml (user config)
4. /opt/brapi-importer/config.toml (production install)
5. /etc/brapi-importer/config.toml (system config)

Secrets are loaded from secrets.env files in the same directories.
"""

from brapi_importer.config.schema import (
    AuthConfig,
    BrAPIConfig,
    DatabaseConfig,
    ImporterConfig,
    ImportsConfig,
    SecretsConfig,
    ServerConfig,
)
from brapi_importer.config.settings import Settings, get_settings, settings

__all__ = [
    "AuthConfig",
    "BrAPIConfig",
    "DatabaseConfig",
    "ImporterConfig",
    "ImportsConfig",
    "SecretsConfig",
    "ServerConfig",
    "Settings",
    "get_settings",
    "settings",
]
