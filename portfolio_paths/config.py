"""Configuration management using Pydantic Settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """Remote compute service (simulation + allocation) configuration."""

    base_url: str = Field(default="http://localhost:3000", alias="PORTFOLIO_SERVICE_URL")
    simulate_path: str = Field(default="/simulate", alias="SIMULATE_PATH")
    allocate_path: str = Field(default="/allocate", alias="ALLOCATE_PATH")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")

    # Retry and backoff settings
    max_retries: int = Field(default=3, alias="SERVICE_MAX_RETRIES")
    base_backoff_seconds: float = Field(default=0.5, alias="SERVICE_BASE_BACKOFF")
    max_backoff_seconds: float = Field(default=8.0, alias="SERVICE_MAX_BACKOFF")

    # Circuit breaker settings
    circuit_breaker_threshold: int = Field(default=5, alias="SERVICE_CIRCUIT_BREAKER_THRESHOLD")
    circuit_breaker_timeout: float = Field(default=30.0, alias="SERVICE_CIRCUIT_BREAKER_TIMEOUT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class EngineSettings(BaseSettings):
    """Orchestration engine configuration."""

    # 0 means every parameter change issues exactly one simulation fetch
    debounce_seconds: float = Field(default=0.0, alias="ENGINE_DEBOUNCE_SECONDS")
    max_concurrent_allocations: int = Field(default=4, alias="ENGINE_MAX_CONCURRENT_ALLOCATIONS")
    max_stale_allocation_retries: int = Field(default=2, alias="ENGINE_MAX_STALE_ALLOCATION_RETRIES")
    color_seed: Optional[int] = Field(default=None, alias="ENGINE_COLOR_SEED")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    level: str = Field(default="INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, alias="LOG_JSON")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class Settings(BaseSettings):
    """Master settings aggregator."""

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
