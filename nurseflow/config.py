"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- No API keys in code
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class AIProviderConfig(BaseModel):
    """Drug information lookup settings. The key is optional: without it the
    lookup answers with an advisory instead of failing."""

    gemini_api_key: str | None = Field(None, description="Google Gemini API key")
    drug_info_model: str = Field(
        default="google-gla:gemini-2.5-flash", description="Model used for drug questions"
    )
    timeout_seconds: float = Field(default=30.0, gt=0.0, description="Timeout for one question")

    @field_validator("gemini_api_key")
    def blank_key_is_missing(cls, v: str | None) -> str | None:
        if v is None or not v.strip() or v == "your-gemini-api-key-here":
            return None
        return v.strip()


class AlertConfig(BaseModel):
    """Due-dose alert polling."""

    check_interval_seconds: float = Field(
        default=30.0, gt=0.0, description="Interval between due-dose evaluations"
    )
    alert_window_hours: float = Field(
        default=24.0, gt=0.0, description="Doses overdue for longer than this are not alerted"
    )
    soon_threshold_minutes: int = Field(
        default=60, gt=0, description="A dose due within this many minutes is 'soon'"
    )


class StorageConfig(BaseModel):
    """Where the ward snapshot is kept."""

    snapshot_path: str = Field(default="./nurseflow_data.json", description="Snapshot file")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Logging level")
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> LogLevel:
        v = val.strip().upper()
        return cast(LogLevel, v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO")

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    ai_config = AIProviderConfig(
        gemini_api_key=os.getenv("GEMINI_API_KEY"),
        drug_info_model=os.getenv("DRUG_INFO_MODEL", "google-gla:gemini-2.5-flash"),
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "30.0")),
    )

    alert_config = AlertConfig(
        check_interval_seconds=float(os.getenv("ALERT_CHECK_INTERVAL_SECONDS", "30.0")),
        alert_window_hours=float(os.getenv("ALERT_WINDOW_HOURS", "24.0")),
    )

    storage_config = StorageConfig(
        snapshot_path=os.getenv("SNAPSHOT_PATH", "./nurseflow_data.json"),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        ai_provider=ai_config,
        alerts=alert_config,
        storage=storage_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install the structlog processor chain for the configured format."""
    config = config or get_config().logging

    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[config.level]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
