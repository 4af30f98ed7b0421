"""Configuration management for the relay monitor."""

import os
from typing import Optional

import structlog
import yaml
from pydantic import BaseModel, Field


logger = structlog.get_logger(__name__)

DEFAULT_ENCRYPTION_KEY = "ai-monitor-default-encryption"


class MonitorSettings(BaseModel):
    """Main configuration for the relay monitor."""

    # Environment settings
    environment: str = Field(default="development", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage
    database_path: str = Field(default="data/relay-monitor.db", description="SQLite database file")

    # Secrets
    encryption_key: str = Field(
        default=DEFAULT_ENCRYPTION_KEY,
        description="Secret used to derive the credential encryption key",
    )

    # Email delivery
    email_from: str = Field(
        default="Relay Monitor <onboarding@resend.dev>", description="Sender for notification emails"
    )
    resend_api_url: str = Field(default="https://api.resend.com/emails", description="Email provider endpoint")

    # Upstream requests
    user_agent: str = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        description="User-Agent sent to gateways",
    )
    models_timeout: float = Field(default=15.0, description="Model listing timeout in seconds")
    billing_timeout: float = Field(default=10.0, description="Billing lookup timeout in seconds")
    checkin_timeout: float = Field(default=15.0, description="Check-in timeout in seconds")
    email_timeout: float = Field(default=15.0, description="Email dispatch timeout in seconds")

    # Scheduling defaults
    default_site_timezone: str = Field(default="UTC", description="Timezone for per-site cron jobs")
    default_global_timezone: str = Field(default="Asia/Shanghai", description="Timezone for the daily batch")


def load_config(config_path: Optional[str] = None) -> MonitorSettings:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("RELAY_MONITOR_CONFIG", "config/relay-monitor.yaml")

    config_data = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides = {
        "environment": os.getenv("MONITOR_ENV"),
        "log_level": os.getenv("LOG_LEVEL"),
        "database_path": os.getenv("DATABASE_PATH"),
        "encryption_key": os.getenv("ENCRYPTION_KEY"),
        "email_from": os.getenv("EMAIL_FROM"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            config_data[key] = value

    settings = MonitorSettings(**config_data)

    if settings.environment == "production" and settings.encryption_key == DEFAULT_ENCRYPTION_KEY:
        logger.warning("Using the default ENCRYPTION_KEY in production; set a strong random secret")

    return settings
