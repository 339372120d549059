"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadgen:leadgen123@db:5432/leadgen"
    STORAGE_BACKEND: str = "postgres"  # "postgres" or "memory"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (distributed locks)
    REDIS_URL: str = "redis://redis:6379/0"
    LOCK_BACKEND: str = "memory"  # "memory" (single process) or "redis"
    LOCK_TIMEOUT_SECONDS: int = 30

    # OAuth / provider calls
    TOKEN_REFRESH_MARGIN_SECONDS: int = 60
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Facebook Lead Ads
    FACEBOOK_GRAPH_URL: str = "https://graph.facebook.com"
    FACEBOOK_GRAPH_VERSION: str = "v18.0"
    FACEBOOK_APP_ID: Optional[str] = None
    FACEBOOK_APP_SECRET: Optional[str] = None
    FACEBOOK_VERIFY_TOKEN: Optional[str] = None

    # Google Ads
    GOOGLE_OAUTH_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_ADS_CLIENT_ID: Optional[str] = None
    GOOGLE_ADS_CLIENT_SECRET: Optional[str] = None
    GOOGLE_ADS_DEVELOPER_TOKEN: Optional[str] = None
    GOOGLE_ADS_API_URL: str = "https://googleads.googleapis.com"
    GOOGLE_ADS_API_VERSION: str = "v16"
    GOOGLE_ADS_WEBHOOK_KEY: Optional[str] = None

    # Lead Configuration
    DEFAULT_PIPELINE_STAGE: str = "New"
    DEFAULT_PHONE_REGION: str = "US"
    MISSING_FIELD_POLICY: str = "reject"  # "reject" or "accept_partial"

    # Feature Flags
    ENABLE_GOOGLE_ADS_SYNC: bool = True
    GOOGLE_ADS_SYNC_MINUTES: int = 15

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
