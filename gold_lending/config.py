"""
Configuration Management Module

Centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LendingConfig(BaseSettings):
    """Gold lending core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="GOLDLOAN_",
        env_file=".env",
        case_sensitive=False,
    )

    # Storage configuration
    database_path: str = "gold_lending.db"
    use_in_memory_storage: bool = False

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    loan_code_prefix: str = "GL"
    min_principal: str = "100"
    max_term_months: int = 120
    allocation_policy: str = "current_installment"  # current_installment or cascade
    payoff_rounding_quantum: str = "1"  # Early payoff rounds to whole rupees
    average_days_per_month: str = "30.44"
    closed_loan_visibility_days: int = 30

    # Receipt notifications
    receipt_webhook_url: str = ""  # Empty = webhook delivery disabled
    receipt_webhook_timeout: float = 5.0
    notification_workers: int = 2

    # Feature flags
    enable_audit_logging: bool = True
    enable_receipts: bool = True


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
