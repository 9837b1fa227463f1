from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pharmabatch.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes
    DB_LOCK_TIMEOUT_MS: int = 5000  # Max wait for batch row locks (PostgreSQL only)

    # App Settings
    APP_NAME: str = "PharmaBatch Expiry Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    AUTO_QUARANTINE_CRON_HOUR: int = 2
    AUTO_QUARANTINE_CRON_MINUTE: int = 30
    SNAPSHOT_CRON_HOUR: int = 2
    SNAPSHOT_CRON_MINUTE: int = 0

    # Stock & expiry thresholds
    LOW_STOCK_THRESHOLD: int = 10  # Product aggregate at/below this emits STOCK_LOW
    EXPIRY_CRITICAL_DAYS: int = 7
    EXPIRY_WARNING_DAYS: int = 30

    # Trend analytics
    TREND_THRESHOLD_PERCENT: float = 10.0
    TREND_LOOKBACK_DAYS: int = 7
    PREDICTION_WINDOW_DAYS: int = 90
    PREDICTION_MIN_SAMPLES: int = 7

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
