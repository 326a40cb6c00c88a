"""Configuration management for the Trading Arena."""

from decimal import Decimal
from typing import List, Literal

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="ENVIRONMENT"
    )
    app_name: str = Field(default="Trading Arena", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")


# =============================================================================
# Arena Configuration
# =============================================================================


class ArenaConfig(BaseSettings):
    """Cadence, risk policy and ledger settings shared by all agents."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Scheduler cadence (seconds)
    turn_interval_seconds: float = Field(
        default=300.0, validation_alias="TURN_INTERVAL_SECONDS"
    )
    refresh_interval_seconds: float = Field(
        default=10.0, validation_alias="REFRESH_INTERVAL_SECONDS"
    )

    # Risk policy
    minimum_trade_size_usd: Decimal = Field(
        default=Decimal("50"), validation_alias="MINIMUM_TRADE_SIZE_USD"
    )
    symbol_cooldown_minutes: float = Field(
        default=30.0, validation_alias="SYMBOL_COOLDOWN_MINUTES"
    )
    default_max_leverage: int = Field(default=25, validation_alias="DEFAULT_MAX_LEVERAGE")
    default_quantity_precision: int = Field(
        default=3, validation_alias="DEFAULT_QUANTITY_PRECISION"
    )

    # Simulated ledger
    simulated_fee_pct: Decimal = Field(
        default=Decimal("0.0005"), validation_alias="SIMULATED_FEE_PCT"
    )
    simulated_initial_balance: Decimal = Field(
        default=Decimal("10000"), validation_alias="SIMULATED_INITIAL_BALANCE"
    )
    live_initial_balance: Decimal = Field(
        default=Decimal("1000"), validation_alias="LIVE_INITIAL_BALANCE"
    )

    # Bounded histories
    turn_log_limit: int = Field(default=50, validation_alias="TURN_LOG_LIMIT")
    value_history_limit: int = Field(default=300, validation_alias="VALUE_HISTORY_LIMIT")
    prompt_history_depth: int = Field(default=5, validation_alias="PROMPT_HISTORY_DEPTH")

    # Startup timeouts (seconds)
    precision_fetch_timeout: float = Field(
        default=3.0, validation_alias="PRECISION_FETCH_TIMEOUT"
    )
    live_sync_timeout: float = Field(default=5.0, validation_alias="LIVE_SYNC_TIMEOUT")

    # Traded universe (stored as comma-separated string, parsed to list)
    symbols_str: str = Field(
        default="BTCUSDT,ETHUSDT,SOLUSDT,BNBUSDT,XRPUSDT,DOGEUSDT",
        validation_alias="ARENA_SYMBOLS",
    )

    @property
    def symbols(self) -> List[str]:
        """Parse symbols string into list."""
        return [s.strip() for s in self.symbols_str.split(",") if s.strip()]

    @computed_field
    @property
    def symbol_cooldown_seconds(self) -> float:
        """Cooldown window expressed in seconds."""
        return self.symbol_cooldown_minutes * 60

    @field_validator(
        "turn_interval_seconds",
        "refresh_interval_seconds",
        "symbol_cooldown_minutes",
        "precision_fetch_timeout",
        "live_sync_timeout",
    )
    @classmethod
    def validate_positive_float(cls, v):
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator("minimum_trade_size_usd", "simulated_initial_balance", "live_initial_balance")
    @classmethod
    def validate_positive_amount(cls, v):
        if v <= 0:
            raise ValueError("Amounts must be positive")
        return v

    @field_validator("simulated_fee_pct")
    @classmethod
    def validate_fee(cls, v):
        """Fee is a fraction of notional (0.0005 = 0.05%)."""
        if v < 0 or v >= 1:
            raise ValueError("Fee must be between 0 and 1")
        return v

    @field_validator("default_max_leverage", "turn_log_limit", "value_history_limit")
    @classmethod
    def validate_at_least_one(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


# =============================================================================
# Venue Configuration
# =============================================================================


class VenueConfig(BaseSettings):
    """Live trading venue configuration.

    Credentials resolve per agent: ``<AGENT_ID>_API_KEY`` /
    ``<AGENT_ID>_API_SECRET`` in the environment win over the default pair.
    """

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    exchange_id: str = Field(default="binanceusdm", validation_alias="VENUE_EXCHANGE_ID")
    sandbox: bool = Field(default=False, validation_alias="VENUE_SANDBOX")
    quote_asset: str = Field(default="USDT", validation_alias="VENUE_QUOTE_ASSET")
    timeout_ms: int = Field(default=10000, validation_alias="VENUE_TIMEOUT_MS")

    api_key: str = Field(default="", validation_alias="VENUE_API_KEY")
    api_secret: str = Field(default="", validation_alias="VENUE_API_SECRET")

    @computed_field
    @property
    def has_default_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


# =============================================================================
# Decision Provider Configuration
# =============================================================================


class ProviderConfig(BaseSettings):
    """LLM decision provider configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
    gemini_endpoint: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="GEMINI_ENDPOINT",
    )

    grok_api_key: str = Field(default="", validation_alias="XAI_API_KEY")
    grok_model: str = Field(default="grok-3-mini-beta", validation_alias="GROK_MODEL")
    grok_endpoint: str = Field(default="https://api.x.ai/v1", validation_alias="GROK_ENDPOINT")

    temperature: float = Field(default=0.9, validation_alias="PROVIDER_TEMPERATURE")
    request_timeout: float = Field(default=60.0, validation_alias="PROVIDER_TIMEOUT")

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v):
        if v < 0 or v > 2:
            raise ValueError("Temperature must be between 0 and 2")
        return v


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/arena.db", validation_alias="DATABASE_URL"
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: str = Field(default="logs/arena.log", validation_alias="LOG_FILE")


# =============================================================================
# Global Configuration Container
# =============================================================================


class ArenaSettings:
    """
    Container for all Trading Arena configurations.

    Usage:
        from arena.core.config import settings

        if settings.arena.minimum_trade_size_usd > size:
            ...
    """

    def __init__(self):
        self.system = SystemConfig()
        self.arena = ArenaConfig()
        self.venue = VenueConfig()
        self.provider = ProviderConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if not self.arena.symbols:
            issues.append("No symbols configured (ARENA_SYMBOLS)")

        if self.arena.refresh_interval_seconds >= self.arena.turn_interval_seconds:
            issues.append("Refresh interval should be shorter than the turn interval")

        if not self.provider.gemini_api_key and not self.provider.grok_api_key:
            issues.append("No decision provider API key configured (GEMINI_API_KEY / XAI_API_KEY)")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

settings = ArenaSettings()

arena_config = settings.arena
venue_config = settings.venue
provider_config = settings.provider
database_config = settings.database
logging_config = settings.logging


__all__ = [
    "ArenaSettings",
    "settings",
    "arena_config",
    "venue_config",
    "provider_config",
    "database_config",
    "logging_config",
    "SystemConfig",
    "ArenaConfig",
    "VenueConfig",
    "ProviderConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
