"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Catalog database (external collaborator, produces the cached values)
    database_url: str = "sqlite:///./storefront.db"

    # Cache backend: "memory" (single process) or "redis" (shared by all workers)
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "storefront_cache"
    cache_tagging_enabled: bool = True

    # Stale-while-revalidate
    cache_default_ttl: int = 3600
    cache_refresh_threshold_percent: int = 10
    cache_revalidation_workers: int = 4

    # Refresh lock
    cache_lock_ttl_seconds: int = 60
    cache_lock_max_retries: int = 3
    cache_lock_retry_backoff: float = 0.2

    # Socket timeout for cache/lock round-trips; a stuck backend fails open
    cache_backend_timeout: float = 0.5

    # Optional separate Redis for locks (defaults to redis_url)
    lock_redis_url: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
