"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Literal


class LedgerConfig(BaseSettings):
    """Core ledger configuration"""

    # Deployment environment; controls how much error detail reaches clients
    environment: Literal["production", "development", "test"] = "development"

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite:///path or postgresql://...
    database_pool_min: int = 1
    database_pool_max: int = 10

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    cors_origins: List[str] = [
        "http://localhost:4000",
        "http://localhost",
        "capacitor://localhost",
        "ionic://localhost",
    ]

    # Security configuration
    jwt_access_secret: str = "change-me-in-production"
    jwt_refresh_secret: str = "change-me-too-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expires_hours: int = 24
    refresh_token_expires_hours: int = 168

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    default_currency: str = "NGN"

    # Rate limiting (requests per window, keyed by client address)
    enable_rate_limiting: bool = True
    rate_limit_window_seconds: int = 15 * 60
    auth_rate_limit: int = 5
    general_rate_limit: int = 100

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
