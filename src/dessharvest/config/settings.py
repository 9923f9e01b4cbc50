"""Application settings using Pydantic Settings."""

import re
from datetime import time
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://web.dessmonitor.com/public/"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DESS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    # Fallback login credentials
    username: str | None = Field(default=None, description="DESS Monitor account (email)")
    password: SecretStr | None = Field(default=None, description="DESS Monitor password")
    company_key: SecretStr | None = Field(default=None, description="DESS Monitor company key")

    # API Configuration
    api_base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="DESS Monitor public API base URL",
    )
    api_timeout: float = Field(default=15.0, description="Timeout for lightweight calls in seconds")
    api_chart_timeout: float = Field(
        default=45.0,
        description="Timeout for chart range calls in seconds (the chart API is slow)",
    )
    language: str = Field(default="en_US", description="i18n parameter sent with data requests")

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./dessharvest.db",
        description="Database connection URL",
    )

    # Fixed device identifiers (skip the device directory lookup when pn is set)
    device_pn: str | None = Field(default=None, description="Fixed device product number")
    device_sn: str | None = Field(default=None, description="Fixed device serial number")
    device_devcode: str | None = Field(default=None, description="Fixed device code")
    device_devaddr: str | None = Field(default=None, description="Fixed device address")

    # Poll cadence
    latest_interval_minutes: int = Field(
        default=5,
        ge=1,
        le=5,
        description="Minutes between latest snapshot fetches (1-5)",
    )
    chart_interval_minutes: int = Field(
        default=5,
        ge=1,
        description="Minutes between chart field fetch cycles",
    )
    key_param_run_time: str = Field(
        default="00:05",
        description="Local time of day (HH:MM) for the daily key parameter fetch",
    )

    # Fetch Configuration
    chart_fields: str = Field(
        default="output_power,pv_output_power,bt_battery_voltage",
        description="Comma-separated chart fields to fetch and serve",
    )
    chart_single_day_fields: str = Field(
        default="bt_battery_voltage,pv_output_power",
        description="Comma-separated chart fields that only accept one day per request",
    )
    key_parameters: str = Field(
        default=(
            "GRID_ACTIVE_POWER,PV_ACTIVE_POWER,LOAD_ACTIVE_POWER,"
            "BATTERY_ACTIVE_POWER,BATTERY_VOLTAGE,BATTERY_SOC"
        ),
        description="Comma-separated key parameters fetched once per day",
    )
    chart_retention_days: int = Field(
        default=2,
        ge=1,
        description="Calendar days of chart points kept after each successful cycle",
    )
    request_delay: float = Field(
        default=0.5,
        ge=0,
        description="Delay in seconds between consecutive chart/key parameter requests",
    )
    chart_precision: int = Field(default=5, description="Chart sample precision in minutes")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (logs to console if not set)",
    )
    log_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        description="Maximum log file size before rotation",
    )
    log_backup_count: int = Field(
        default=5,
        description="Number of backup log files to keep",
    )

    @field_validator("key_param_run_time")
    @classmethod
    def _validate_run_time(cls, value: str) -> str:
        if not re.fullmatch(r"([01]\d|2[0-3]):[0-5]\d", value.strip()):
            raise ValueError("key_param_run_time must be HH:MM (24h)")
        return value.strip()

    def has_fallback_credentials(self) -> bool:
        """Check whether username, password and company key are all configured."""
        return bool(
            self.username
            and self.password
            and self.password.get_secret_value()
            and self.company_key
            and self.company_key.get_secret_value()
        )

    def get_fixed_device_params(self) -> dict[str, str] | None:
        """Return configured device identifiers, or None if no fixed pn is set."""
        if not self.device_pn:
            return None
        params = {
            "pn": self.device_pn,
            "sn": self.device_sn,
            "devcode": self.device_devcode,
            "devaddr": self.device_devaddr,
        }
        return {k: v for k, v in params.items() if v}

    def get_chart_fields_list(self) -> list[str]:
        """Parse chart_fields into a list."""
        return _split_csv(self.chart_fields)

    def get_single_day_fields(self) -> frozenset[str]:
        """Parse chart_single_day_fields into a set."""
        return frozenset(_split_csv(self.chart_single_day_fields))

    def get_key_parameters_list(self) -> list[str]:
        """Parse key_parameters into a list."""
        return _split_csv(self.key_parameters)

    def get_key_param_run_time(self) -> time:
        """Parse key_param_run_time into a time of day."""
        hours, minutes = self.key_param_run_time.split(":")
        return time(int(hours), int(minutes))


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
