"""Application configuration using Pydantic settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION_ENVIRONMENTS = {"production", "prod"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str | None = None
    environment: str | None = None
    env: str | None = None
    node_env: str | None = None
    pr_deployment: bool = False
    debug: bool = False
    log_level: str = "INFO"

    # Deployment platform; a non-empty app name switches secrets to the environment
    fly_app_name: str | None = None

    # Database
    database_url_override: str | None = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL", "database_url")
    )
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "wallet"
    db_password: str = ""
    db_name: str = "wallet"
    db_ssl_mode: str | None = None
    db_echo: bool = False
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    test_db: bool = False
    reset_db: bool = False

    # Identity tokens issued by the identity provider
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Symmetric key for YNAB credentials at rest
    encryption_key: str = "change-me"

    # YNAB
    ynab_base_url: str = "https://api.ynab.com/v1"
    ynab_sync_timeout_seconds: float = 10.0
    ynab_on_demand_timeout_seconds: float = 30.0
    sync_max_attempts: int = 3
    sync_retry_delay_seconds: float = 0.5

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_timezone: str | None = None
    scheduler_jitter_seconds: float = 1.0

    @property
    def environment_name(self) -> str:
        """Resolve the deployment environment from the first variable that is set."""
        for value in (self.app_env, self.environment, self.env, self.node_env):
            if value:
                return value.lower()
        return "development"

    @property
    def is_production(self) -> bool:
        return self.environment_name in PRODUCTION_ENVIRONMENTS and not self.pr_deployment

    @property
    def use_environment_secrets(self) -> bool:
        return bool(self.fly_app_name)

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return _as_async_url(self.database_url_override)
        url = (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )
        if self.db_ssl_mode and self.db_ssl_mode != "disable":
            url += f"?ssl={self.db_ssl_mode}"
        return url


def _as_async_url(url: str) -> str:
    """Point plain postgres URLs at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
