"""
Core Configuration Management
PropDesk Challenge Platform

Environment-based settings for the bookkeeping core, the event bus,
the trade journal and the HTTP surface.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List, Literal
from functools import lru_cache
from decimal import Decimal


class DatabaseSettings(BaseSettings):
    """Trade journal database settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    enabled: bool = Field(default=False, description="Mirror bookkeeping into the journal")
    echo: bool = Field(default=False, description="Log emitted SQL")
    create_tables: bool = Field(default=True, description="Create tables on startup")


class RedisSettings(BaseSettings):
    """Redis Streams connection for the event bus."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Publish events to Redis Streams")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")

    # Streams settings
    stream_prefix: str = Field(default="pd:events:", description="Stream key prefix")
    stream_max_len: int = Field(default=10000, description="Max stream length")
    consumer_group: str = Field(default="propdesk", description="Consumer group name")

    @property
    def url(self) -> str:
        """Redis URL."""
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class TradingSettings(BaseSettings):
    """Bookkeeping core settings."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    # Execution
    margin_per_lot: Decimal = Field(default=Decimal("1000"), description="Flat margin reserved per lot")
    slippage_pips: int = Field(default=2, description="Adverse slippage applied to fills, in pips")
    quote_max_age_seconds: float = Field(
        default=0.0,
        description="Reject quotes older than this (0 disables the check)"
    )
    symbols_file: Optional[str] = Field(
        default=None,
        description="JSON file overriding the built-in symbol list"
    )

    # Daily drawdown period
    daily_reset_time: str = Field(default="17:00", description="Daily reset wall-clock time")
    daily_reset_timezone: str = Field(
        default="America/New_York",
        description="Timezone of the daily reset"
    )
    monitor_interval_seconds: float = Field(
        default=60.0,
        description="Daily reset monitor interval"
    )

    # Challenge defaults
    default_starting_balance: Decimal = Field(default=Decimal("25000"), description="Default account size")
    default_profit_target_pct: Decimal = Field(default=Decimal("10"), description="Default profit target %")
    default_max_drawdown_pct: Decimal = Field(default=Decimal("10"), description="Default max drawdown %")
    default_daily_drawdown_pct: Decimal = Field(default=Decimal("5"), description="Default daily drawdown %")


class LoggingSettings(BaseSettings):
    """loguru sink configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log format"
    )

    # File logging
    file_enabled: bool = Field(default=True, description="Enable file logging")
    file_path: str = Field(default="logs/propdesk.json", description="Structured log file path")
    error_file_path: str = Field(default="logs/error.log", description="Error log file path")
    file_rotation: str = Field(default="10 MB", description="Log rotation size")
    file_retention: str = Field(default="30 days", description="Log retention period")


class APISettings(BaseSettings):
    """Uvicorn bind address and CORS."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = Field(default="0.0.0.0", description="API host")
    port: int = Field(default=8000, description="API port")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost"],
        description="Allowed CORS origins"
    )


class Settings(BaseSettings):
    """
    Top-level settings read from the environment and `.env`.

    Sub-settings are built on access so each reads its own env prefix
    (`TRADING_`, `DB_`, `REDIS_`, `LOG_`, `API_`).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    PROJECT_NAME: str = Field(default="PropDesk", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Environment"
    )
    API_V1_STR: str = "/api/v1"

    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./propdesk.db",
        description="Journal database URL"
    )
    REDIS_URL: Optional[str] = Field(default=None, description="Redis URL override")

    @property
    def db(self) -> DatabaseSettings:
        """Journal database (`DB_`)."""
        return DatabaseSettings()

    @property
    def redis(self) -> RedisSettings:
        """Event bus connection (`REDIS_`)."""
        return RedisSettings()

    @property
    def redis_url(self) -> str:
        """Explicit REDIS_URL wins over the assembled one."""
        return self.REDIS_URL or self.redis.url

    @property
    def trading(self) -> TradingSettings:
        """Bookkeeping constants and challenge defaults (`TRADING_`)."""
        return TradingSettings()

    @property
    def logging(self) -> LoggingSettings:
        """loguru sinks (`LOG_`)."""
        return LoggingSettings()

    @property
    def api(self) -> APISettings:
        """HTTP server and CORS (`API_`)."""
        return APISettings()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, parsed once."""
    return Settings()


settings = get_settings()
