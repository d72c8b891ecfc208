"""
Application configuration management using Pydantic Settings
Handles all environment variables and application settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    APP_NAME: str = "Storefront Discounts API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./storefront.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Security Settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_ROLES: List[str] = ["admin"]

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Discount engine
    DEFAULT_USER_USAGE_LIMIT: Optional[int] = 1
    DISCOUNT_PREFLIGHT_TTL_SECONDS: int = 300
    DISCOUNT_CODE_PREFIX: str = "SAVE"
    DISCOUNT_CODE_LENGTH: int = 8
    CURRENCY_SYMBOL: str = "$"
    FIRST_ORDER_DISCOUNT_CODE: str = "WELCOME30"
    COMPLETED_PAYMENT_STATUS: str = "completed"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "1000/hour"
    RATE_LIMIT_DISCOUNT_VALIDATE: str = "20/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
