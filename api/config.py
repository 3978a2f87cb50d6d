"""
Application configuration
"""
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (and `.env` when present)."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    VERSION: str = "1.0.0"
    DEBUG: bool = False
    TESTING: bool = False

    # API server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_WORKERS: int = 1
    API_RELOAD: bool = False
    API_LOG_LEVEL: str = "info"
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Public base URL, used for download links and direct worker dispatch
    PUBLIC_URL: str = "http://localhost:8000"

    # Database
    DATABASE_URL: str = "sqlite:///./data/livephoto.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Queue (Celery broker). Unset switches /generate to direct dispatch.
    QUEUE_URL: Optional[str] = None

    # Key-value store for the daily stylization counter
    REDIS_URL: str = "redis://localhost:6379/0"

    # Storage
    STORAGE_CONFIG: str = "./config/storage.yml"
    STORAGE_PATH: str = "./storage_data"
    MAX_UPLOAD_SIZE: int = 500 * 1024 * 1024

    # Stylization provider
    WAVESPEED_API_KEY: Optional[str] = None
    WAVESPEED_API_BASE: str = "https://api.wavespeed.ai/api/v3"
    WAVESPEED_TIMEOUT_SECONDS: float = 30.0
    STYLIZE_RESOLUTION: str = "1k"
    STYLIZE_POLL_MAX_ATTEMPTS: int = 60
    STYLIZE_POLL_INTERVAL_MS: int = 3000
    STYLIZE_DAILY_LIMIT: int = 100

    # Status stream
    STATUS_POLL_INTERVAL: float = 2.0

    # Media pipeline
    FRAME_LOAD_TIMEOUT: float = 10.0
    FRAME_JPEG_QUALITY: int = 90
    COMPOSE_COVER_HOLD_SECONDS: float = 1.5
    COMPOSE_TRANSITION_SECONDS: float = 0.5
    COMPOSE_TARGET_FPS: int = 30
    COMPOSE_REALTIME: bool = True

    ENABLE_METRICS: bool = True

    @property
    def database_url_async(self) -> str:
        """Database URL with an async driver."""
        url = self.DATABASE_URL
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


settings = Settings()
