from typing import Any, Literal, Optional

import pytz
import yaml
from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from market_watcher.utils.env_utils import get_bool_env, get_str_env
from market_watcher.utils.logger import LOGGER as logger

DEFAULT_CONFIG_PATH = "config/config.yaml"


# Base model for all configuration classes to enforce strict validation
class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SystemConfig(StrictBaseModel):
    name: str = "SlowMarketWatcher"
    version: str = "0.1.0"


class LoggingConfig(StrictBaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
    file: Optional[str] = None
    rotation: str = "10 MB"
    retention: str = "30 days"
    compression: str = "zip"


class ApiRateLimit(StrictBaseModel):
    limit: int = Field(gt=0)
    interval: float = Field(gt=0)


class MarketDataConfig(StrictBaseModel):
    base_url: str = "https://www.alphavantage.co/query"
    symbols: list[str] = Field(default_factory=lambda: ["VGK", "VOO"], min_length=1)
    output_size: Literal["compact", "full"] = "compact"
    timeout_seconds: float = Field(default=30.0, gt=0)
    resolve_names: bool = True
    rate_limit: ApiRateLimit = Field(default_factory=lambda: ApiRateLimit(limit=5, interval=60))

    @field_validator("symbols")
    @classmethod
    def normalize_symbols(cls, symbols: list[str]) -> list[str]:
        normalized: list[str] = []
        for symbol in symbols:
            cleaned = symbol.strip().upper()
            if not cleaned:
                raise ValueError("symbols must not contain empty entries")
            if cleaned in normalized:
                raise ValueError(f"duplicate symbol: {cleaned}")
            normalized.append(cleaned)
        return normalized


class IndicatorConfig(StrictBaseModel):
    lookback_days: int = Field(default=14, gt=0)
    # Upper bound on the backward day-by-day walk when looking for a trading day.
    max_gap_days: int = Field(default=30, gt=0)
    # False divides the N+1 accumulated samples by N.
    average_over_samples: bool = False


class SchedulerConfig(StrictBaseModel):
    cron_expression: str = "0 9 * * *"
    debug_cron_expression: str = "* * * * *"
    timezone: str = "Europe/London"
    run_on_startup: bool = True

    @field_validator("cron_expression", "debug_cron_expression")
    @classmethod
    def validate_cron(cls, expression: str) -> str:
        if not croniter.is_valid(expression):
            raise ValueError(f"invalid cron expression: '{expression}'")
        return expression

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, timezone: str) -> str:
        try:
            pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"unknown timezone: '{timezone}'") from e
        return timezone


class TelegramConfig(StrictBaseModel):
    base_url: str = "https://api.telegram.org"
    poll_timeout_seconds: int = Field(default=30, ge=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    retry_delay_seconds: float = Field(default=5.0, ge=0)
    parse_mode: Literal["Markdown", "MarkdownV2", "HTML"] = "Markdown"


class PersistenceConfig(StrictBaseModel):
    path: str = "data/chat_ids"


class MetricsConfig(StrictBaseModel):
    enabled: bool = False
    endpoint_port: int = Field(default=8000, gt=0, lt=65536)
    default_histogram_buckets: list[float] = Field(default_factory=lambda: [0.5, 1, 2.5, 5, 10, 30, 60, 120])


class SecretsConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    alpha_vantage_api_key: str = Field(min_length=1)
    telegram_access_token: str = Field(min_length=1)


class AppConfig(StrictBaseModel):
    system: SystemConfig = Field(default_factory=SystemConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    secrets: SecretsConfig


def format_validation_error(e: ValidationError) -> str:
    error_messages = []
    for error in e.errors():
        loc = " -> ".join(map(str, error["loc"]))
        msg = error["msg"]
        error_messages.append(f"  - In section '{loc}': {msg}")
    return "\n".join(error_messages)


class ConfigLoader:
    """
    Loads the YAML configuration and merges in secrets from the environment.
    The result is cached; configuration is fixed for the lifetime of the process.
    """

    def __init__(self, config_path: Optional[str] = None) -> None:
        self.config_path = config_path or get_str_env("MARKET_WATCHER_CONFIG", DEFAULT_CONFIG_PATH)
        self._config: Optional[AppConfig] = None

    def get_config(self) -> AppConfig:
        if self._config is None:
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    config_data = yaml.safe_load(f)
                if config_data is None:
                    logger.error(f"ConfigurationError: Config file '{self.config_path}' is empty or invalid.")
                    raise ValueError("Config file is empty or invalid")
                if not isinstance(config_data, dict):
                    raise ValueError("Config file must contain a mapping at the top level")

                if "secrets" in config_data:
                    logger.error("ConfigurationError: secrets must come from the environment, not config.yaml.")
                    raise ValueError("secrets section is not allowed in config.yaml")

                # Credentials come from environment variables (or .env) only
                config_data["secrets"] = SecretsConfig().model_dump()  # type: ignore[call-arg]

                if get_bool_env("DEBUG_SCHEDULE"):
                    scheduler_data: dict[str, Any] = dict(config_data.get("scheduler") or {})
                    debug_expression = scheduler_data.get(
                        "debug_cron_expression", SchedulerConfig.model_fields["debug_cron_expression"].default
                    )
                    scheduler_data["cron_expression"] = debug_expression
                    config_data["scheduler"] = scheduler_data
                    logger.warning(f"DEBUG_SCHEDULE=true - polling on debug schedule '{debug_expression}'")

                self._config = AppConfig(**config_data)
            except FileNotFoundError:
                logger.error(f"ConfigurationError: Config file '{self.config_path}' not found.")
                raise FileNotFoundError(f"Configuration file '{self.config_path}' not found.") from None
            except ValidationError as e:
                error_str = format_validation_error(e)
                logger.error(
                    f"ConfigurationValidationError: Configuration validation failed for '{self.config_path}':\n{error_str}"
                )
                raise ValueError(f"Configuration validation failed:\n{error_str}") from e
            except yaml.YAMLError as e:
                logger.error(f"ConfigurationError: Could not parse '{self.config_path}': {e}")
                raise ValueError(f"Error parsing config file '{self.config_path}': {e}") from e
        return self._config
