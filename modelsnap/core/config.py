"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "ModelSnap Render API"
    DEBUG: bool = False
    API_BASE_URL: str = "http://localhost:8000"  # Used to absolutize relative image refs
    LOG_LEVEL: str = "INFO"

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./modelsnap.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # Render service (FASHN virtual try-on)
    FASHN_API_KEY: str = ""
    FASHN_API_BASE_URL: str = "https://api.fashn.ai"
    FASHN_MODEL_NAME: str = "tryon-v1.6"
    FASHN_MODE: str = "balanced"  # performance | balanced | quality
    RENDER_POLL_INTERVAL: float = 2.0  # Seconds between status checks
    RENDER_MAX_WAIT_TIME: float = 60.0  # Wall-clock budget for one render
    RENDER_SUBMIT_RETRIES: int = 3  # HTTP-level attempts, distinct from job retries
    RENDER_BACKOFF_BASE: float = 1.0  # 1s, 2s, 4s ...
    RENDER_HTTP_TIMEOUT: float = 30.0

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage
    USE_GCS: bool = False
    GCS_BUCKET_UPLOADS: str = "modelsnap-uploads"
    GCS_BUCKET_OUTPUTS: str = "modelsnap-outputs"
    GCP_PROJECT_ID: str = ""

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Worker settings
    JOB_TIMEOUT_DRAIN: int = 900  # RQ hard timeout for one drain pass
    MAX_JOB_RETRIES: int = 3
    MAX_BATCH_SIZE: int = 50
    DRAIN_REQUEUE_DELAY: int = 30  # Seconds before a batch with requeued jobs is drained again
    STALE_BATCH_SECONDS: int = 900  # A processing claim older than this may be reclaimed

    # Ledger
    FREE_TIER_CREDITS: int = 3
    FREE_CREDIT_RESET_DAYS: int = 30
    ROYALTY_AMOUNT_CENTS: int = 200
    MIN_PAYOUT_CENTS: int = 1000

    # Delivery
    WATERMARK_TEXT: str = "ModelSnap.ai"

    # Notifications
    NOTIFICATION_WEBHOOK_URL: str = ""

    # Secrets
    WORKER_SECRET: str = ""
    ADMIN_API_TOKEN: str = ""

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 20

    @field_validator('FASHN_API_KEY', 'WORKER_SECRET', 'ADMIN_API_TOKEN', mode='before')
    @classmethod
    def strip_secrets(cls, v):
        """Strip whitespace and newlines from secrets loaded from files."""
        if isinstance(v, str):
            return v.strip()
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
