"""
Application configuration management
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Mawid"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    SECRET_KEY: str  # Must be provided via environment
    API_PREFIX: str = "/api/v1"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if not v or v == "your-secret-key-change-this-in-production":
            raise ValueError("SECRET_KEY must be set to a secure value in production")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str  # Must be provided via environment

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # JWT
    JWT_SECRET_KEY: str  # Must be provided via environment
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Email
    SENDGRID_API_KEY: str = ""
    FROM_EMAIL: str = "noreply@mawid.iq"
    FRONTEND_URL: str = "http://localhost:3000"

    # QiCard payment gateway (validated at the point of use)
    QICARD_BASE_URL: Optional[str] = "https://uat-sandbox-3ds-api.qi.iq/api/v1/"
    QICARD_USERNAME: Optional[str] = None
    QICARD_PASSWORD: Optional[str] = None
    QICARD_TERMINAL_ID: Optional[str] = None
    QICARD_CURRENCY: str = "IQD"
    QICARD_PUBLIC_KEY_PATH: Optional[str] = "storage/qicard/public-key.pem"
    QICARD_VERIFY_WEBHOOKS: bool = False
    QICARD_WEBHOOK_URL: Optional[str] = None
    QICARD_RETURN_URL: Optional[str] = None
    QICARD_CANCEL_URL: Optional[str] = None
    QICARD_TIMEOUT_SECONDS: float = 30.0

    # Payment lifecycle
    PAYMENT_PENDING_TTL_MINUTES: int = 30
    PAYMENT_LOCK_TIMEOUT_SECONDS: float = 10.0
    BOOKING_SYNC_MAX_ATTEMPTS: int = 3
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_BACKOFF_SECONDS: float = 1.0

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://localhost:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("QICARD_BASE_URL")
    @classmethod
    def normalize_gateway_url(cls, v: Optional[str]) -> Optional[str]:
        # Endpoint paths are joined onto the base URL
        if v and not v.endswith("/"):
            v = v + "/"
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    @property
    def must_verify_webhooks(self) -> bool:
        """Webhook signature checks can only be switched off outside production"""
        return self.QICARD_VERIFY_WEBHOOKS or self.is_production

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()
