"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class BankAPIConfig(BaseSettings):
    """Bank API service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="BANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///bank.db"  # memory://, sqlite:///path or postgresql://...

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 15

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr


# Global configuration instance
config = BankAPIConfig()


def get_config() -> BankAPIConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankAPIConfig:
    """Reload configuration from environment"""
    global config
    config = BankAPIConfig()
    return config
