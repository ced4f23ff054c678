"""Application configuration via pydantic-settings.

All secrets and environment-specific values must be stored in `.env` and read here.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_csv(raw: str) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from `.env`."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = Field(default="ipgate", alias="APP_NAME")
    api_cors_origins: str = Field(default="http://localhost", alias="API_CORS_ORIGINS")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    jwt_secret_key: str = Field(alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_access_token_expire_minutes: int = Field(
        default=60, alias="JWT_ACCESS_TOKEN_EXPIRE_MINUTES"
    )
    admin_email: str | None = Field(default=None, alias="ADMIN_EMAIL")
    admin_password: str | None = Field(default=None, alias="ADMIN_PASSWORD")

    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(default="ipgate", alias="POSTGRES_DB")
    postgres_user: str = Field(default="ipgate", alias="POSTGRES_USER")
    postgres_password: str = Field(default="ipgate", alias="POSTGRES_PASSWORD")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    block_cache_enabled: bool = Field(default=False, alias="BLOCK_CACHE_ENABLED")
    block_cache_ttl_seconds: int = Field(default=30, alias="BLOCK_CACHE_TTL_SECONDS")

    rate_limit_public_requests: int = Field(default=100, alias="RATE_LIMIT_PUBLIC_REQUESTS")
    rate_limit_public_window_seconds: float = Field(
        default=60.0, alias="RATE_LIMIT_PUBLIC_WINDOW_SECONDS"
    )
    rate_limit_auth_requests: int = Field(default=10, alias="RATE_LIMIT_AUTH_REQUESTS")
    rate_limit_auth_window_seconds: float = Field(
        default=60.0, alias="RATE_LIMIT_AUTH_WINDOW_SECONDS"
    )
    rate_limit_admin_requests: int = Field(default=20, alias="RATE_LIMIT_ADMIN_REQUESTS")
    rate_limit_admin_window_seconds: float = Field(
        default=60.0, alias="RATE_LIMIT_ADMIN_WINDOW_SECONDS"
    )
    auto_block_tiers: str = Field(default="public,auth,admin", alias="AUTO_BLOCK_TIERS")

    auth_path_prefixes: str = Field(default="/api/auth", alias="AUTH_PATH_PREFIXES")
    admin_path_prefixes: str = Field(
        default="/api/visitors/blocked,/api/admin", alias="ADMIN_PATH_PREFIXES"
    )
    gate_exempt_paths: str = Field(default="", alias="GATE_EXEMPT_PATHS")
    trust_proxy_headers: bool = Field(default=True, alias="TRUST_PROXY_HEADERS")

    store_timeout_seconds: float = Field(default=2.0, alias="STORE_TIMEOUT_SECONDS")
    sweep_interval_seconds: float = Field(default=30.0, alias="SWEEP_INTERVAL_SECONDS")
    sweep_grace_multiplier: float = Field(default=10.0, alias="SWEEP_GRACE_MULTIPLIER")

    @property
    def database_dsn(self) -> str:
        """Return SQLAlchemy async DSN (explicit DATABASE_URL wins over PostgreSQL parts)."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_dsn(self) -> str:
        """Return Redis DSN."""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


settings = get_settings()
