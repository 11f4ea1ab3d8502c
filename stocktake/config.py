from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


def _parse_list(v):
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return [item.strip() for item in v.split(',') if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the identity provider)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Stocktake Reconciliation Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Roles allowed to operate in audit mode (stage 4 counts, closure, ERP)
    AUDIT_ROLES: list[str] = ["admin", "manager", "supervisor"]

    # Counting workflow
    AUTO_ADVANCE_AFTER_SECOND_COUNT: bool = True  # count2_closed -> count3_required | audit_mode
    BULK_BATCH_SIZE: int = 200  # Items committed per batch in bulk operations

    # ERP Integration
    ERP_ENABLED: bool = True
    ERP_BASE_URL: str = "http://localhost:5001"
    ERP_API_KEY: Optional[str] = None
    ERP_TIMEOUT_SECONDS: float = 30.0
    ERP_BATCH_SIZE: int = 500  # Stock updates per ERP request

    @field_validator('CORS_ORIGINS', 'AUDIT_ROLES', mode='before')
    @classmethod
    def parse_list_settings(cls, v):
        return _parse_list(v)

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
