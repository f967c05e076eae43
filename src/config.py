"""Application configuration using pydantic-settings."""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: str = "INFO"

    # Storage
    data_dir: str = "./data"
    templates_dir: str = "./data/templates"
    screenshot_dir: str = "./data/screenshots"
    template_ttl_days: int = Field(default=30, ge=1)

    # Browser pool
    browser_headless: bool = True
    browser_max_browsers: int = Field(default=4, ge=1, le=20)
    browser_timeout_ms: int = Field(default=30000, ge=1000, le=120000)
    browser_viewport_width: int = Field(default=1920, ge=320, le=3840)
    browser_viewport_height: int = Field(default=1080, ge=240, le=2160)
    browser_user_agent: str = DEFAULT_USER_AGENT
    browser_disable_images: bool = False
    browser_disable_javascript: bool = False
    browser_health_interval: float = Field(default=60.0, ge=1.0)  # seconds
    browser_lease_timeout: float | None = Field(default=None, gt=0)  # seconds, None waits

    # Form detection (confidence on the 0-100 scale)
    detector_min_confidence: float = Field(default=50.0, ge=0, le=100)
    detector_max_forms: int = Field(default=10, ge=1, le=100)
    detector_wait_timeout_ms: int = Field(default=10000, ge=1000, le=120000)
    detector_settle_delay: float = Field(default=2.0, ge=0)  # seconds after load

    # Form filling
    filler_fill_delay: float = Field(default=0.1, ge=0)  # seconds between fields
    filler_submit_delay: float = Field(default=1.0, ge=0)
    filler_take_screenshots: bool = True

    # Execution engine (0 = derive from CPU count)
    engine_max_concurrency: int = Field(default=0, ge=0, le=100)
    engine_auto_adjust: bool = True
    engine_retry_attempts: int = Field(default=3, ge=0, le=10)
    engine_retry_backoff: float = Field(default=1.0, ge=0)
    engine_delay_between_jobs: float = Field(default=1.0, ge=0)
    engine_monitoring_interval: float = Field(default=5.0, ge=0.1)
    engine_max_cpu_percent: float = Field(default=80.0, gt=0, le=100)
    engine_max_memory_percent: float = Field(default=75.0, gt=0, le=100)
    engine_min_free_memory_mb: int = Field(default=512, ge=0)
    engine_submit_forms: bool = False

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.app_env == Environment.DEVELOPMENT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
