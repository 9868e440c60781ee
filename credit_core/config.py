"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class CreditCoreConfig(BaseSettings):
    """Credit core configuration"""

    # Database configuration
    database_url: str = "sqlite:///credit_core.db"  # or memory:// for tests

    # Credit pricing and penalties
    rate_margin: float = 5.0  # Points added to the benchmark rate at origination
    penalty_rate: float = 0.10  # Share of the installment charged on a missed payment

    # Payment scheduler
    scheduler_enabled: bool = True
    scheduler_interval_hours: float = 12.0
    scheduler_stop_timeout: float = 5.0

    # Benchmark rate source
    rate_source: str = "static"  # static or cbr
    static_benchmark_rate: float = 16.0
    rate_source_url: str = "https://www.cbr.ru/DailyInfoWebServ/DailyInfo.asmx"
    rate_source_timeout: float = 10.0
    rate_lookback_days: int = 30

    # Notifications
    notification_channel: str = "log"  # log, email or webhook
    notification_timeout: float = 10.0
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "noreply@credit-core.local"
    webhook_url: str = ""

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "CREDIT_CORE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = CreditCoreConfig()


def get_config() -> CreditCoreConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CreditCoreConfig:
    """Reload configuration from environment"""
    global config
    config = CreditCoreConfig()
    return config
