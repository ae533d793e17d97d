"""
Order Service: Configuration
All settings are read from environment variables (or .env file).
"""
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "order-service"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── JWT (tokens are issued by the identity service) ──────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── PostgreSQL (Order DB) ─────────────────────────────────
    POSTGRES_HOST: str = "order-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "order_db"
    POSTGRES_USER: str = "order_user"
    POSTGRES_PASSWORD: str = "order_pass"
    DATABASE_URL: str = ""  # overrides the POSTGRES_* settings when set

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (realtime pub/sub) ──────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Realtime ──────────────────────────────────────────────
    BROADCAST_BACKEND: Literal["memory", "redis"] = "memory"
    BROADCAST_CHANNEL_PREFIX: str = "room:"
    WS_OUTBOUND_QUEUE_SIZE: int = 100

    # ── UPI payment link ──────────────────────────────────────
    UPI_PAYEE_NAME: str = "Canteen Manager"
    UPI_CURRENCY: str = "INR"

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
