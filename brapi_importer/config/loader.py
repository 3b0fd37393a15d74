"""Configuration loader for BrAPI Importer.

Loads configuration from TOML files and secrets from .env files.
Environment variables can override any configuration value.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from brapi_importer.config.schema import ImporterConfig, SecretsConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "BRAPI_IMPORTER"
CONFIG_DIR_NAME = "brapi-importer"

# Keys converted from environment strings before validation
_INT_KEYS = {
    "port",
    "workers",
    "rate_limit_per_minute",
    "max_upload_mb",
    "max_rows",
    "job_ttl_hours",
    "cleanup_interval_seconds",
    "page_size",
}
_FLOAT_KEYS = {"timeout_seconds"}
_BOOL_KEYS = {"debug", "enabled"}


def _search_paths(filename: str) -> list[Path]:
    return [
        # Project root (current working directory)
        Path.cwd() / filename,
        # User config directory
        Path.home() / ".config" / CONFIG_DIR_NAME / filename,
        # Production install directory
        Path("/opt") / CONFIG_DIR_NAME / filename,
        # System config (Linux FHS)
        Path("/etc") / CONFIG_DIR_NAME / filename,
    ]


def get_config_search_paths() -> list[Path]:
    """Get the list of paths to search for configuration files.

    Returns paths in priority order (first found wins):
    1. ./config.toml (project root - for development)
    2. ~/.config/brapi-importer/config.toml (user config)
    3. /opt/brapi-importer/config.toml (production install)
    4. /etc/brapi-importer/config.toml (system config)
    """
    return _search_paths("config.toml")


def get_secrets_search_paths() -> list[Path]:
    """Get the list of paths to search for secrets files, same order as config."""
    return _search_paths("secrets.env")


def find_config_file() -> Path | None:
    """Find the first existing config file from search paths."""
    for path in get_config_search_paths():
        if path.exists() and path.is_file():
            logger.debug("Found config file: %s", path)
            return path
    return None


def find_secrets_file() -> Path | None:
    """Find the first existing secrets file from search paths."""
    for path in get_secrets_search_paths():
        if path.exists() and path.is_file():
            logger.debug("Found secrets file: %s", path)
            return path
    return None


def load_toml_file(path: Path) -> dict[str, Any]:
    """Load a TOML file and return its contents as a dictionary."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a simple .env file into a dictionary.

    Supports:
    - KEY=value
    - KEY="quoted value"
    - # comments
    - Empty lines
    """
    env_vars: dict[str, str] = {}

    with open(path) as f:
        for line in f:
            line = line.strip()

            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            env_vars[key] = value

    return env_vars


def apply_env_overrides(config_dict: dict[str, Any], prefix: str = ENV_PREFIX) -> None:
    """Apply environment variable overrides to configuration dictionary.

    Environment variables are mapped as follows:
    - BRAPI_IMPORTER_SERVER_PORT -> config_dict["server"]["port"]
    - BRAPI_IMPORTER_BRAPI_BASE_URL -> config_dict["brapi"]["base_url"]
    - etc.

    Note: This modifies config_dict in place.
    """
    env_mappings = {
        # Server
        f"{prefix}_SERVER_HOST": ("server", "host"),
        f"{prefix}_SERVER_PORT": ("server", "port"),
        f"{prefix}_SERVER_WORKERS": ("server", "workers"),
        f"{prefix}_SERVER_DEBUG": ("server", "debug"),
        f"{prefix}_DEBUG": ("server", "debug"),  # Shorthand
        f"{prefix}_HOST": ("server", "host"),  # Shorthand
        f"{prefix}_PORT": ("server", "port"),  # Shorthand
        # Database
        f"{prefix}_DATABASE_MONGODB_URL": ("database", "mongodb_url"),
        f"{prefix}_DATABASE_MONGODB_DATABASE": ("database", "mongodb_database"),
        f"{prefix}_MONGODB_URL": ("database", "mongodb_url"),  # Shorthand
        f"{prefix}_MONGODB_DATABASE": ("database", "mongodb_database"),  # Shorthand
        # BrAPI store
        f"{prefix}_BRAPI_BACKEND": ("brapi", "backend"),
        f"{prefix}_BRAPI_BASE_URL": ("brapi", "base_url"),
        f"{prefix}_BRAPI_REFERENCE_SOURCE": ("brapi", "reference_source"),
        f"{prefix}_BRAPI_TIMEOUT_SECONDS": ("brapi", "timeout_seconds"),
        f"{prefix}_BRAPI_PAGE_SIZE": ("brapi", "page_size"),
        # Imports
        f"{prefix}_IMPORTS_MAX_UPLOAD_MB": ("imports", "max_upload_mb"),
        f"{prefix}_IMPORTS_MAX_ROWS": ("imports", "max_rows"),
        f"{prefix}_IMPORTS_JOB_TTL_HOURS": ("imports", "job_ttl_hours"),
        f"{prefix}_IMPORTS_CLEANUP_INTERVAL_SECONDS": ("imports", "cleanup_interval_seconds"),
        # Auth
        f"{prefix}_AUTH_ENABLED": ("auth", "enabled"),
    }

    for env_var, path in env_mappings.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        section, key = path
        config_dict.setdefault(section, {})

        if key in _INT_KEYS:
            config_dict[section][key] = int(value)
        elif key in _FLOAT_KEYS:
            config_dict[section][key] = float(value)
        elif key in _BOOL_KEYS:
            config_dict[section][key] = value.lower() in ("true", "1", "yes")
        else:
            config_dict[section][key] = value


def load_secrets(secrets_file: Path | None = None) -> SecretsConfig:
    """Load secrets from environment variables and optional secrets.env file.

    Environment variables take precedence over file values.
    """
    key_mapping = {
        f"{ENV_PREFIX}_SECRET_KEY": "secret_key",
        f"{ENV_PREFIX}_BRAPI_TOKEN": "brapi_token",
    }
    secrets_dict: dict[str, str | None] = {}

    if secrets_file is None:
        secrets_file = find_secrets_file()

    if secrets_file and secrets_file.exists():
        logger.info("Loading secrets from: %s", secrets_file)
        file_secrets = parse_env_file(secrets_file)
        for file_key, config_key in key_mapping.items():
            if file_key in file_secrets:
                secrets_dict[config_key] = file_secrets[file_key]

    for env_var, config_key in key_mapping.items():
        value = os.environ.get(env_var)
        if value:
            secrets_dict[config_key] = value

    return SecretsConfig(**secrets_dict)


def load_config(config_file: Path | None = None) -> ImporterConfig:
    """Load configuration from TOML file with environment variable overrides.

    Args:
        config_file: Optional path to config file. If not provided,
                     searches default locations.

    Returns:
        ImporterConfig instance with all settings loaded.
    """
    config_dict: dict[str, Any] = {}

    if config_file is None:
        config_file = find_config_file()

    if config_file and config_file.exists():
        logger.info("Loading config from: %s", config_file)
        config_dict = load_toml_file(config_file)
    else:
        logger.info("No config file found, using defaults with env overrides")

    apply_env_overrides(config_dict)

    return ImporterConfig(**config_dict)
