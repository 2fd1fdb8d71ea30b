"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProcessFlowConfig(BaseSettings):
    """Process workflow service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="PROCESSFLOW_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Database configuration
    database_url: str = "sqlite:///processflow.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules
    template_delete_policy: Literal["reject", "cascade"] = "reject"
    process_number_prefix: str = "PROC"

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = ProcessFlowConfig()


def get_config() -> ProcessFlowConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ProcessFlowConfig:
    """Reload configuration from environment"""
    global config
    config = ProcessFlowConfig()
    return config
