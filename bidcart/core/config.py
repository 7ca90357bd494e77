"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import List, Optional, Union


class Settings(BaseSettings):
    """Application settings"""

    # App
    APP_NAME: str = "BidCart Auction Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./bidcart.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Real-time fan-out: "local" (single process) or "redis" (multiple replicas)
    PUBSUB_BACKEND: str = "local"
    ADMIN_CHANNEL: str = "auction:admin"

    # Bid acceptance
    BID_CAS_MAX_RETRIES: int = 5
    BID_CAS_BACKOFF_MS: int = 5
    MIN_BID_INCREMENT_FLOOR: float = 0.01

    # Per-auction Redis lock in front of the CAS
    BID_LOCK_ENABLED: bool = False
    LOCK_EXPIRE_MS: int = 3000  # milliseconds
    LOCK_RETRY_DELAY: float = 0.005  # seconds
    LOCK_MAX_RETRIES: int = 10

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # CORS
    CORS_ORIGINS: Union[List[str], str] = ["*"]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('PUBSUB_BACKEND')
    @classmethod
    def check_pubsub_backend(cls, v):
        if v not in ("local", "redis"):
            raise ValueError("PUBSUB_BACKEND must be 'local' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        case_sensitive = True
        extra = 'ignore'


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
