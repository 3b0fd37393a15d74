"""Global settings instance for BrAPI Importer.

This module provides a unified settings object that combines:
- Configuration from config.toml
- Secrets from secrets.env
- Environment variable overrides
"""

import logging
import secrets as secrets_module

from brapi_importer.config.loader import load_config, load_secrets
from brapi_importer.config.schema import ImporterConfig, SecretsConfig

logger = logging.getLogger(__name__)


class Settings:
    """Unified settings object combining config and secrets.

    Exposes a flat interface over the structured ImporterConfig and
    SecretsConfig models.
    """

    def __init__(
        self,
        config: ImporterConfig | None = None,
        secrets: SecretsConfig | None = None,
    ):
        """Initialize settings.

        Args:
            config: Optional ImporterConfig instance. If not provided, loads from file.
            secrets: Optional SecretsConfig instance. If not provided, loads from file.
        """
        self._config = config or load_config()
        self._secrets = secrets or load_secrets()

        if not self._secrets.secret_key:
            self._secrets.secret_key = secrets_module.token_urlsafe(32)
            logger.warning(
                "SECURITY WARNING: No secret key configured. "
                "A random secret key has been generated. JWT tokens will be invalidated "
                "when the server restarts. Set BRAPI_IMPORTER_SECRET_KEY for production use."
            )

    @property
    def config(self) -> ImporterConfig:
        """Get the full configuration object."""
        return self._config

    @property
    def secrets(self) -> SecretsConfig:
        """Get the secrets configuration object."""
        return self._secrets

    # Application
    @property
    def app_name(self) -> str:
        return self._config.app_name

    @property
    def debug(self) -> bool:
        return self._config.server.debug

    # Server
    @property
    def host(self) -> str:
        return self._config.server.host

    @property
    def port(self) -> int:
        return self._config.server.port

    @property
    def workers(self) -> int:
        return self._config.server.workers

    @property
    def rate_limit_per_minute(self) -> int:
        return self._config.server.rate_limit_per_minute

    @property
    def cors_origins(self) -> list[str]:
        return self._config.server.cors_origins

    # Database
    @property
    def mongodb_url(self) -> str:
        return self._config.database.mongodb_url

    @property
    def mongodb_database(self) -> str:
        return self._config.database.mongodb_database

    @property
    def min_pool_size(self) -> int:
        return self._config.database.min_pool_size

    @property
    def max_pool_size(self) -> int:
        return self._config.database.max_pool_size

    # BrAPI store
    @property
    def brapi_backend(self) -> str:
        return self._config.brapi.backend

    @property
    def brapi_base_url(self) -> str:
        return self._config.brapi.base_url

    @property
    def reference_source(self) -> str:
        return self._config.brapi.reference_source

    @property
    def brapi_timeout_seconds(self) -> float:
        return self._config.brapi.timeout_seconds

    @property
    def brapi_page_size(self) -> int:
        return self._config.brapi.page_size

    # Imports
    @property
    def max_upload_size_mb(self) -> int:
        return self._config.imports.max_upload_mb

    @property
    def max_upload_size_bytes(self) -> int:
        return self._config.imports.max_upload_bytes

    @property
    def max_rows(self) -> int:
        return self._config.imports.max_rows

    @property
    def job_ttl_hours(self) -> int:
        return self._config.imports.job_ttl_hours

    @property
    def cleanup_interval_seconds(self) -> int:
        return self._config.imports.cleanup_interval_seconds

    # Auth
    @property
    def auth_enabled(self) -> bool:
        return self._config.auth.enabled

    # Secrets
    @property
    def secret_key(self) -> str:
        # Never None after __init__
        return self._secrets.secret_key or ""

    @property
    def brapi_token(self) -> str | None:
        return self._secrets.brapi_token


# Global settings instance - lazily initialized
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance.

    The settings are loaded once and cached for subsequent calls.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance.

    This is primarily useful for testing to reload configuration.
    """
    global _settings
    _settings = None


class _SettingsProxy:
    """Proxy object that lazily loads settings on first access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)

    def __repr__(self) -> str:
        return repr(get_settings())


settings = _SettingsProxy()
