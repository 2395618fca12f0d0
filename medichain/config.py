"""Configuration management using Pydantic Settings."""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PostgreSQL Configuration
    postgres_host: str = Field(default="postgres", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_user: str = Field(default="medichain", description="PostgreSQL user")
    postgres_password: str = Field(default="medichain_dev_password", description="PostgreSQL password")
    postgres_db: str = Field(default="medichain", description="PostgreSQL database name")
    database_url: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL overriding the postgres_* settings (e.g. sqlite+aiosqlite for local dev)",
    )
    auto_create_tables: bool = Field(default=True, description="Create missing tables on startup")

    # Redis Configuration
    redis_host: str = Field(default="redis", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_password: Optional[str] = Field(default=None, description="Redis password")
    redis_db: int = Field(default=0, description="Redis database number")

    # Startup connectivity retries
    retry_max_attempts: int = Field(default=5, description="Maximum connection attempts at startup")
    retry_initial_delay: float = Field(default=0.5, description="Initial backoff delay in seconds")
    retry_max_delay: float = Field(default=10.0, description="Maximum backoff delay in seconds")
    retry_exponential_base: float = Field(default=2.0, description="Backoff multiplier")
    retry_jitter: bool = Field(default=True, description="Add random jitter to backoff delays")

    # Application Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    service_name: str = Field(default="qr_access", description="Service name used for logging")

    # Authentication Configuration
    jwt_secret_key: str = Field(default="dev-secret-key-change-in-production", description="JWT secret key")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_access_token_expire_minutes: int = Field(default=30, description="Access token expiration in minutes")

    # QR Access Configuration
    frontend_base_url: str = Field(default="http://localhost:3000", description="Base URL used to build shareable QR links")
    qr_min_duration_hours: float = Field(default=0.083, description="Shortest grant lifetime (5 minutes as sent by clients)")
    qr_max_duration_hours: float = Field(default=24.0, description="Longest grant lifetime")
    qr_default_duration_hours: float = Field(default=2.0, description="Grant lifetime when the client omits one")
    record_preview_length: int = Field(default=200, description="Content preview length for basic-level records")
    recent_records_days: int = Field(default=30, description="Window for recent health records")
    recent_records_limit: int = Field(default=10, description="Maximum number of recent health records disclosed")
    token_collision_retries: int = Field(default=3, description="Token regeneration attempts on collision")

    # Rate limiting for the public verify and data endpoints
    rate_limit_enabled: bool = Field(default=True, description="Throttle anonymous token lookups per client IP")
    rate_limit_requests: int = Field(default=30, description="Requests allowed per client IP within the window")
    rate_limit_window: int = Field(default=60, description="Rate limit window in seconds")
    rate_limit_strategy: str = Field(default="sliding_window", description="sliding_window or fixed_window")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def postgres_url(self) -> str:
        """Generate PostgreSQL connection URL."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def redis_url(self) -> str:
        """Generate Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


# Global settings instance
settings = Settings()
