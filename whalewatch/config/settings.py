"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)


class WatcherSettings(BaseSettings):
    """Watcher settings with environment variable support."""

    # Environment
    env: Literal["dev", "prod"] = Field(description="Environment: dev, prod")

    # Upstream proxy and tracked token
    proxy_url: str = Field(description="URL of the credential-injecting data proxy")
    chain: str = Field(default="eth", description="Chain namespace of the tracked token")
    token_address: str | None = Field(default=None, description="Token contract to track")
    holder_limit: int = Field(default=100, gt=0, description="Holders fetched per snapshot")

    # Polling and rate limiting
    poll_interval_seconds: float = Field(
        default=6 * 60 * 60, gt=0, description="Seconds between holder snapshots"
    )
    request_delay_seconds: float = Field(
        default=0.25, ge=0, description="Minimum gap between upstream requests"
    )
    cache_ttl_seconds: float = Field(
        default=300.0, ge=0, description="Time to live of cached provider responses"
    )

    # Snapshot history and alerting
    history_size: int = Field(default=5, ge=1, description="Snapshots kept per token")
    alert_threshold_pct: float = Field(
        default=10.0, ge=0, description="Balance change percent worth alerting on"
    )
    whale_fraction: float = Field(
        default=0.1, gt=0, le=1, description="Share of holders listed as whales in alerts"
    )

    # Data storage
    database_path: str = Field(
        default="./whalewatch.sqlite", description="SQLite database path"
    )
    storage_quota_bytes: int | None = Field(
        default=None, description="Storage size quota, None for unlimited"
    )

    # Notifications
    telegram_bot_token: str | None = Field(
        default=None, description="Telegram bot token"
    )
    telegram_admin_ids: list[int] = Field(
        default_factory=list, description="Telegram admin user IDs"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_settings(profile: str, yaml_path: str) -> WatcherSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, prod)
        yaml_path: Path to YAML configuration file

    Returns:
        WatcherSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in ["dev", "prod"]:
        raise ValueError(f"Invalid profile: {profile}. Must be one of: dev, prod")

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError("Invalid YAML configuration: top level must be a mapping")

        yaml_config["env"] = profile

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = WatcherSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            chain=settings.chain,
            token_address=settings.token_address,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
