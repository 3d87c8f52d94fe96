# helpdesk/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    DATABASE_URL: str = Field(default="sqlite:///./tickets.db")
    APP_NAME: str = "Helpdesk API"
    APP_DESC: str = "Support ticket tracker"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # CORS origins, comma separated; only honoured in production
    CORS_ORIGINS: str | None = None

    LOG_LEVEL: str = "INFO"

    MAX_BODY_BYTES: int = Field(default=10 * 1024 * 1024, ge=0)

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=15 * 60, ge=1)

    # Connection pool
    DB_POOL_SIZE: int = Field(default=20, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=0, ge=0)
    DB_POOL_TIMEOUT: float = Field(default=2.0, gt=0)
    DB_CONNECT_TIMEOUT: int = Field(default=10, ge=1)
    DB_CONNECT_RETRIES: int = Field(default=5, ge=1)
    DB_CONNECT_RETRY_DELAY: float = Field(default=5.0, ge=0)

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
