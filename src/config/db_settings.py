from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PoolConfig(BaseSettings):
    """PostgreSQL connection settings shared by the asyncpg pool and Alembic."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL", min_length=1)
    db_pool_min_size: int = Field(default=1, alias="DB_POOL_MIN_SIZE", ge=1)
    db_pool_max_size: int = Field(default=10, alias="DB_POOL_MAX_SIZE", ge=1)
    db_pool_timeout_seconds: float | None = Field(
        default=None, alias="DB_POOL_TIMEOUT_SECONDS", gt=0
    )
    # Interpolated into SQL by the gateways, hence the strict identifier pattern
    db_schema: str = Field(default="console", alias="DB_SCHEMA", pattern=r"^[a-z_][a-z0-9_]*$")
    application_name: str = Field(default="vic-console", alias="DB_APPLICATION_NAME")

    @field_validator("database_url")
    @classmethod
    def _normalise_scheme(cls, value: str) -> str:
        url = value.strip()
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://") :]
        if not url.startswith("postgresql://"):
            raise ValueError("DATABASE_URL must be a postgresql:// URL")
        return url

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "PoolConfig":
        if self.db_pool_max_size < self.db_pool_min_size:
            raise ValueError("DB_POOL_MAX_SIZE must be greater than or equal to DB_POOL_MIN_SIZE")
        return self

    @property
    def dsn(self) -> str:
        return self.database_url

    @property
    def server_settings(self) -> dict[str, str]:
        """Session settings applied to every pooled connection."""
        return {"application_name": self.application_name, "timezone": "UTC"}
