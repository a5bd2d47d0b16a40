import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="FEEDCACHE_DATABASE_URL")
    database_pool_size: int = Field(10, alias="FEEDCACHE_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="FEEDCACHE_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="FEEDCACHE_DATABASE_ECHO")
    database_auto_create: bool = Field(False, alias="FEEDCACHE_DATABASE_AUTO_CREATE")

    generator_url: str = Field("http://localhost:8000", alias="FEEDCACHE_GENERATOR_URL")
    generator_timeout_seconds: float = Field(20.0, gt=0, le=120, alias="FEEDCACHE_GENERATOR_TIMEOUT_SECONDS")

    feed_ttl_hours: int = Field(24, ge=1, alias="FEEDCACHE_FEED_TTL_HOURS")
    min_feed_size: int = Field(5, ge=1, alias="FEEDCACHE_MIN_FEED_SIZE")
    max_feed_size: int = Field(15, ge=1, alias="FEEDCACHE_MAX_FEED_SIZE")

    scheduler_enabled: bool = Field(True, alias="FEEDCACHE_SCHEDULER_ENABLED")
    scheduler_disabled_jobs: List[str] = Field(default_factory=list, alias="FEEDCACHE_SCHEDULER_DISABLED_JOBS")
    refresh_batch_size: int = Field(5, ge=1, alias="FEEDCACHE_REFRESH_BATCH_SIZE")
    refresh_batch_pause_seconds: float = Field(1.0, ge=0, alias="FEEDCACHE_REFRESH_BATCH_PAUSE_SECONDS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid feed cache configuration: {exc}") from exc
    if settings.min_feed_size > settings.max_feed_size:
        raise RuntimeError(
            "FEEDCACHE_MIN_FEED_SIZE must not exceed FEEDCACHE_MAX_FEED_SIZE "
            f"({settings.min_feed_size} > {settings.max_feed_size})."
        )
    return settings
