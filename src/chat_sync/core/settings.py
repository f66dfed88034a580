"""Application settings and configuration.

This module defines all configuration options for the chat sync engine.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    app_name: str = Field(default="Chat Sync", alias="APP_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration (async SQLAlchemy URLs)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./chat_sync.db",
        alias="DATABASE_URL",
    )
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Webhook notification delivery
    webhook_url: str | None = Field(default=None, alias="WEBHOOK_URL")
    webhook_timeout_seconds: float = Field(default=10.0, alias="WEBHOOK_TIMEOUT_SECONDS")
    # 0 means unbounded
    webhook_queue_maxsize: int = Field(default=0, alias="WEBHOOK_QUEUE_MAXSIZE")

    # Contact enrichment
    contact_name_fill_enabled: bool = Field(default=False, alias="CONTACT_NAME_FILL_ENABLED")
    profile_picture_sync_enabled: bool = Field(
        default=True,
        alias="PROFILE_PICTURE_SYNC_ENABLED",
    )
    profile_picture_resolution: str = Field(
        default="preview",
        alias="PROFILE_PICTURE_RESOLUTION",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts async driver URLs to their synchronous counterparts for
        operations like Alembic migrations.

        Returns:
            Database URL compatible with synchronous database drivers
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        if url.startswith("sqlite+aiosqlite"):
            return url.replace("sqlite+aiosqlite", "sqlite", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
