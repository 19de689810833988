from pydantic_settings import BaseSettings
from functools import lru_cache
from redis import Redis, RedisError
from typing import List
import os
import time
import logging

from src.shortener.core.errors import StorageError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("shortener")


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Settings can be overridden by environment variables or .env file.
    """

    STORAGE_BACKEND: str = "sql"

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./shortener.db")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_KEY_PREFIX: str = "shortener"
    REDIS_RETRY_ATTEMPTS: int = 3
    REDIS_RETRY_DELAY: int = 1

    BASE_URL: str = "http://localhost:8000"
    ALLOWED_ORIGINS: str = "http://localhost:8000,http://localhost:3000"

    SHORT_CODE_LENGTH: int = 6
    CUSTOM_CODE_PATTERN: str = r"^[A-Za-z0-9]{3,10}$"
    RESERVED_CODES: List[str] = [
        "stats",
        "shorten",
        "maintenance",
        "links",
        "docs",
        "redoc",
        "health",
        "api",
    ]
    MAX_GENERATION_ATTEMPTS: int = 1000

    MIN_VALIDITY_MINUTES: int = 1
    MAX_VALIDITY_MINUTES: int = 10080
    DEFAULT_VALIDITY_MINUTES: int = 30

    MAX_BULK_URLS: int = 5

    PURGE_EXPIRED_ON_STARTUP: bool = False
    PURGE_INTERVAL_SECONDS: int = 0

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to avoid loading .env file multiple times.
    """
    return Settings()


settings = get_settings()


def get_redis(url: str = None) -> Redis:
    """
    Get a connected Redis client.

    Retries the connection a few times before giving up.

    Raises:
        StorageError: If Redis stays unreachable after all attempts
    """
    retry_attempts = settings.REDIS_RETRY_ATTEMPTS
    retry_delay = settings.REDIS_RETRY_DELAY

    for attempt in range(retry_attempts):
        try:
            redis_client = Redis.from_url(url or settings.REDIS_URL, decode_responses=True)
            redis_client.ping()
            return redis_client
        except RedisError as e:
            if attempt < retry_attempts - 1:
                logger.warning(f"Redis connection attempt {attempt+1} failed: {e}. Retrying in {retry_delay}s...")
                time.sleep(retry_delay)
            else:
                logger.error(f"Redis connection failed after {retry_attempts} attempts: {e}")
                raise StorageError(f"Redis unavailable: {e}") from e
