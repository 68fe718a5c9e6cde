"""Application settings (pydantic-settings).

Values come from the process environment and an optional ``.env`` file in
the working directory.

Environment variables:
    PORT: HTTP port (default 9847).
    HOST: Bind address (default 0.0.0.0).
    DOMAIN: Public domain name (default localhost).
    SITE_NAME: Display name (default WebAP.to).
    DATABASE_URL: Cache DSN; overrides DATA_DIR.
    DATA_DIR: Directory for the default SQLite cache file (default ".").
    DISCOVERY_TIMEOUT_S: Per-request nodeinfo timeout (default 10).
    LOG_LEVEL: Root log level (default INFO).
    ALLOWED_ORIGINS: Comma-separated CORS origins (default "*").
"""

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_FILE = "webap_cache.db"


class Settings(BaseSettings):
    """Typed configuration for the lookup service."""

    port: int = Field(default=9847, ge=1, le=65535, validation_alias="PORT")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    domain: str = Field(default="localhost", validation_alias="DOMAIN")
    site_name: str = Field(default="WebAP.to", validation_alias="SITE_NAME")
    data_dir: str = Field(default=".", validation_alias="DATA_DIR")
    database_url: str | None = Field(
        default=None,
        description="Cache DSN. Falls back to <DATA_DIR>/webap_cache.db.",
        validation_alias="DATABASE_URL",
    )
    discovery_timeout_s: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for each nodeinfo HTTP request, in seconds.",
        validation_alias="DISCOVERY_TIMEOUT_S",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    cors_allow_origins_raw: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins.",
        validation_alias="ALLOWED_ORIGINS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def resolved_database_url(self) -> str:
        """The cache DSN, applying the DATA_DIR fallback."""
        if self.database_url:
            return self.database_url
        return os.path.join(self.data_dir, DEFAULT_DATABASE_FILE)

    @property
    def cors_allow_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allow_origins_raw.split(",")
            if origin.strip()
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings singleton."""
    return Settings()
