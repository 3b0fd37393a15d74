"""Pydantic models for BrAPI Importer configuration.

These models define the structure of config.toml and secrets.env files.
"""

from typing import Literal

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    workers: int = 2
    debug: bool = False
    rate_limit_per_minute: int = 60
    # CORS configuration - empty list means same-origin only
    cors_origins: list[str] = []


class DatabaseConfig(BaseModel):
    """MongoDB database configuration (import job storage)."""

    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "brapi_importer"
    # Connection pool settings
    min_pool_size: int = 10
    max_pool_size: int = 100


class BrAPIConfig(BaseModel):
    """Connection to the BrAPI store that imports are reconciled against."""

    backend: Literal["memory", "http"] = "memory"
    base_url: str = "http://localhost:8083/brapi/v2"
    # Prefix of every external reference source written by this service
    reference_source: str = "brapi-importer.local"
    timeout_seconds: float = 30.0
    page_size: int = 1000


class ImportsConfig(BaseModel):
    """Upload limits and job retention."""

    max_upload_mb: int = 10
    max_rows: int = 5000
    job_ttl_hours: int = 72
    cleanup_interval_seconds: int = 3600

    @property
    def max_upload_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_mb * 1024 * 1024


class AuthConfig(BaseModel):
    """Authentication configuration."""

    enabled: bool = True


class ImporterConfig(BaseModel):
    """Main configuration loaded from config.toml."""

    app_name: str = "BrAPI Importer"
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    brapi: BrAPIConfig = Field(default_factory=BrAPIConfig)
    imports: ImportsConfig = Field(default_factory=ImportsConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)


class SecretsConfig(BaseModel):
    """Secrets loaded from secrets.env file.

    These are sensitive values that should not be stored in config.toml.
    """

    secret_key: str | None = None
    brapi_token: str | None = None
