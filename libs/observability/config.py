"""Configuration for structured logging."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Logging configuration, read from ``LOG_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Minimum log level")
    format: Literal["json", "console"] = Field(
        default="json", description="Renderer for log lines"
    )
    enable_correlation: bool = True
    enable_tracing_integration: bool = True
    service_name: str = "unified-sql"
