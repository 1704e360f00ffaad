from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cattle_tracking.infra.types.db import BackendKind


class PoolConfig(BaseSettings):
    """Connection settings for the PostgreSQL pool, resolved from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    host: str = Field(default="localhost", alias="DB_HOST", min_length=1)
    port: int = Field(default=5432, alias="DB_PORT", gt=0, le=65535)
    database: str = Field(default="cattle_tracking_db", alias="DB_NAME", min_length=1)
    user: str = Field(default="postgres", alias="DB_USER", min_length=1)
    password: str = Field(default="password", alias="DB_PASSWORD")
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV"),
    )
    min_size: int = Field(default=1, alias="DB_POOL_MIN_SIZE", ge=0)
    max_size: int = Field(default=20, alias="DB_POOL_MAX_SIZE", ge=1)
    idle_timeout: float = Field(default=30.0, alias="DB_IDLE_TIMEOUT_SECONDS", gt=0)
    connect_timeout: float = Field(default=2.0, alias="DB_CONNECT_TIMEOUT_SECONDS", gt=0)
    backend: BackendKind = Field(default="postgres", alias="DB_BACKEND")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    @property
    def ssl(self) -> bool:
        """SSL is required only in production."""
        return self.environment.lower() == "production"

    @property
    def dsn(self) -> str | None:
        """Explicit connection string, when ``DATABASE_URL`` is set."""
        return self.database_url

    @field_validator("backend", mode="before")
    @classmethod
    def normalise_backend(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str | None) -> str | None:
        """Accept an empty value as unset; otherwise require a postgres scheme."""
        if v is None or not v.strip():
            return None
        url = v.strip()
        if not url.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with postgresql:// or postgres://")
        return url

    def model_post_init(self, __context: Any) -> None:
        if self.max_size < self.min_size:
            raise ValueError("DB_POOL_MAX_SIZE must be greater than or equal to DB_POOL_MIN_SIZE")

    def describe(self) -> dict[str, Any]:
        """Connection details safe to log or display (no password, no DSN)."""
        return {
            "environment": self.environment,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "ssl": self.ssl,
            "backend": self.backend,
            "pool": {
                "min_size": self.min_size,
                "max_size": self.max_size,
                "idle_timeout": self.idle_timeout,
                "connect_timeout": self.connect_timeout,
            },
        }
