from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "content-factory"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "CONTENT_FACTORY_ENVIRONMENT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "CONTENT_FACTORY_LOG_LEVEL"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/content_factory",
        validation_alias=AliasChoices("DATABASE_URL", "CONTENT_FACTORY_DATABASE_URL"),
    )
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "CONTENT_FACTORY_REDIS_URL"))
    celery_enabled: bool = Field(default=False, validation_alias=AliasChoices("CELERY_ENABLED", "CONTENT_FACTORY_CELERY_ENABLED"))
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "CONTENT_FACTORY_SCHEDULER_ENABLED"))
    publish_tick_seconds: int = Field(default=30, validation_alias=AliasChoices("PUBLISH_TICK_SECONDS", "CONTENT_FACTORY_PUBLISH_TICK_SECONDS"))
    default_publish_delay_seconds: int = Field(default=5, validation_alias=AliasChoices("DEFAULT_PUBLISH_DELAY_SECONDS", "CONTENT_FACTORY_DEFAULT_PUBLISH_DELAY_SECONDS"))
    publish_control_poll_seconds: float = Field(default=1.0, validation_alias=AliasChoices("PUBLISH_CONTROL_POLL_SECONDS", "CONTENT_FACTORY_PUBLISH_CONTROL_POLL_SECONDS"))
    max_combinations: int = Field(default=10_000, validation_alias=AliasChoices("MAX_COMBINATIONS", "CONTENT_FACTORY_MAX_COMBINATIONS"))
    generation_row_batch_size: int = Field(default=500, validation_alias=AliasChoices("GENERATION_ROW_BATCH_SIZE", "CONTENT_FACTORY_GENERATION_ROW_BATCH_SIZE"))
    generation_insert_batch_size: int = Field(default=100, validation_alias=AliasChoices("GENERATION_INSERT_BATCH_SIZE", "CONTENT_FACTORY_GENERATION_INSERT_BATCH_SIZE"))
    watchdog_enabled: bool = Field(default=True, validation_alias=AliasChoices("WATCHDOG_ENABLED", "CONTENT_FACTORY_WATCHDOG_ENABLED"))
    watchdog_interval_minutes: int = Field(default=5, validation_alias=AliasChoices("WATCHDOG_INTERVAL_MINUTES", "CONTENT_FACTORY_WATCHDOG_INTERVAL_MINUTES"))
    stuck_processing_minutes: int = Field(default=15, validation_alias=AliasChoices("STUCK_PROCESSING_MINUTES", "CONTENT_FACTORY_STUCK_PROCESSING_MINUTES"))
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, validation_alias=AliasChoices("MAX_UPLOAD_BYTES", "CONTENT_FACTORY_MAX_UPLOAD_BYTES"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
