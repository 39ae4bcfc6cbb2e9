"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class SelldownConfig(BaseSettings):
    """Payout engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///selldown.db"  # or memory:// for tests

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Processing configuration
    max_workers: int = 8  # Per-loan worker pool size
    days_in_year: int = 365  # ACTUAL_365 day-count denominator
    default_month_on_month_day: Optional[int] = None  # Cycle anchor when a deal has none

    class Config:
        env_prefix = "SELLDOWN_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = SelldownConfig()


def get_config() -> SelldownConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SelldownConfig:
    """Reload configuration from environment"""
    global config
    config = SelldownConfig()
    return config
