"""
Marketplace Analytics Engine
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Event Store / Snapshot Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="marketplace_analytics", alias="database", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache and Counter Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class AggregationSettings(BaseSettings):
    """Daily snapshot aggregation job"""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    max_concurrency: int = Field(default=8, ge=1, description="Entities aggregated in parallel per phase")
    schedule_cron: str = Field(default="0 1 * * *", description="Cron schedule for the daily run (UTC)")
    top_countries: int = Field(default=10, description="Countries kept in the platform snapshot")


class CounterSettings(BaseSettings):
    """Real-time counter keys"""

    model_config = SettingsConfigDict(env_prefix="COUNTERS_")

    key_prefix: str = Field(default="analytics", description="Counter key prefix")
    # 25 hours so a daily key survives timezone skew
    daily_key_ttl_seconds: int = Field(default=90000, description="Expiry of per-day counter keys")
    active_viewer_window_seconds: int = Field(default=300, description="Active viewer sliding window")


class RecommendationSettings(BaseSettings):
    """Recommendation lists and badges"""

    model_config = SettingsConfigDict(env_prefix="RECOMMENDATIONS_")

    list_cache_ttl: int = Field(default=3600, description="TTL for product lists in seconds")
    personalized_cache_ttl: int = Field(default=1800, description="TTL for per-user lists in seconds")
    badge_cache_ttl: int = Field(default=1800, description="TTL for badges in seconds")
    badge_sample_size: int = Field(default=1000, description="Max products ranked for percentile badges")
    trending_window_days: int = Field(default=7)
    new_product_days: int = Field(default=14)
    bestseller_window_days: int = Field(default=90)
    hot_min_views: int = Field(default=10)
    hot_conversion_rate: float = Field(default=0.05)
    percentile_fraction: float = Field(default=0.1)


class ReportingSettings(BaseSettings):
    """Report caching"""

    model_config = SettingsConfigDict(env_prefix="REPORTING_")

    report_cache_ttl: int = Field(default=600, description="TTL for reports in seconds")
    overview_cache_ttl: int = Field(default=300, description="TTL for overview and funnel in seconds")
    top_products_limit: int = Field(default=10)


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="marketplace-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    counters: CounterSettings = Field(default_factory=CounterSettings)
    recommendations: RecommendationSettings = Field(default_factory=RecommendationSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
