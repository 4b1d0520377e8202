"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Debt ledger configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "debt_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Time source: all "today" calculations use this fixed UTC offset
    timezone_offset_hours: int = 7  # Thailand

    # Business rules configuration
    default_currency: str = "THB"
    legal_annual_rate_limit: str = "0.15"  # Civil and Commercial Code s.654
    default_min_payment_percent: str = "0.05"
    default_allocation_method: str = "INTEREST_FIRST"
    default_risk_level: str = "MEDIUM"

    # Collections thresholds (days past due)
    collection_normal_after_days: int = 30
    collection_high_after_days: int = 60
    collection_critical_after_days: int = 90

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


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
