"""
Configuration module for the transfer tracker.
Loads settings from environment variables, .env and an optional tracker.toml.
"""
from pathlib import Path
from typing import Annotated, List, Optional, Tuple, Type

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from core.errors import ConfigurationError
from core.models import WatermarkStrategy
from utils.addresses import is_valid_address, parse_addresses


class Settings(BaseSettings):
    """Application settings. Environment variables use the TRACKER_ prefix."""

    # Network
    rpc_url: str = "https://fullnode.mainnet.sui.io:443"
    timeout_seconds: float = Field(default=30, gt=0)

    # Monitoring
    poll_interval_seconds: float = Field(default=10, gt=0)
    batch_size: int = Field(default=10, gt=0)
    force_check_limit: int = Field(default=50, gt=0)
    max_concurrent_fetches: int = Field(default=32, gt=0)
    max_retries: int = Field(default=3, gt=0)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    # "poll_time" advances watermarks to the poll start, "max_event" to the newest event
    watermark_strategy: WatermarkStrategy = WatermarkStrategy.POLL_TIME
    monitored_addresses: Annotated[List[str], NoDecode] = Field(default_factory=list)

    # Ledger
    max_history_records: int = Field(default=1000, gt=0)
    cleanup_interval_hours: int = Field(default=24, gt=0)
    history_max_age_seconds: int = Field(default=86400, gt=0)
    maintenance_interval_seconds: float = Field(default=30, gt=0)

    # Alert rules (amounts in MIST)
    low_balance_threshold: int = Field(default=1_000_000_000, gt=0)
    large_transfer_threshold: int = Field(default=10_000_000_000, gt=0)
    alert_cooldown_seconds: float = Field(default=300, ge=0)
    high_frequency_limit: int = Field(default=10, gt=0)
    high_frequency_window_seconds: int = Field(default=3600, gt=0)

    # Alert sinks
    enable_console_alerts: bool = True
    enable_file_alerts: bool = False
    alert_file_path: str = "./logs/alerts_feed.log"
    enable_webhook_alerts: bool = False
    webhook_url: Optional[str] = None
    enable_email_alerts: bool = False
    smtp_server: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_sender: Optional[str] = None
    email_recipients: Annotated[List[str], NoDecode] = Field(default_factory=list)
    enable_telegram_alerts: bool = False
    telegram_bot_token: Optional[str] = None
    # Format: "chat_id" or "chat_id:thread_id" for topics
    telegram_chat_id: Optional[str] = None

    # Logging / storage
    log_level: str = "INFO"
    log_dir: str = "logs"
    data_dir: str = "./data"

    model_config = SettingsConfigDict(
        env_prefix="TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        toml_file="tracker.toml",
        case_sensitive=False,
        extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Explicit arguments, then environment, then .env, then tracker.toml
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @field_validator("rpc_url")
    @classmethod
    def _check_rpc_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("RPC URL cannot be empty")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"RPC URL must be http(s): {value}")
        return value

    @field_validator("monitored_addresses", mode="before")
    @classmethod
    def _split_addresses(cls, value):
        if isinstance(value, str):
            return parse_addresses(value)
        return value

    @field_validator("monitored_addresses")
    @classmethod
    def _check_addresses(cls, value: List[str]) -> List[str]:
        normalized = []
        for address in value:
            address = address.strip().lower()
            if not is_valid_address(address):
                raise ValueError(f"Invalid SUI address: {address}")
            if address not in normalized:
                normalized.append(address)
        return normalized

    @field_validator("email_recipients", mode="before")
    @classmethod
    def _split_recipients(cls, value):
        if isinstance(value, str):
            return [r.strip() for r in value.split(",") if r.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


def load_settings(**overrides) -> Settings:
    """
    Build settings from all sources.

    Raises:
        ConfigurationError: If any value fails validation
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}")


def get_settings() -> Settings:
    """Get application settings."""
    return load_settings()


# Create data directory if it doesn't exist
def ensure_data_directory(settings: Optional[Settings] = None) -> Path:
    """Ensure the data directory exists for exports."""
    settings = settings or get_settings()
    data_dir = Path(settings.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
