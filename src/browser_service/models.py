"""Pydantic models for the browser pool."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.config import DEFAULT_USER_AGENT, Settings

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]


class BrowserStatus(str, Enum):
    """Lifecycle status of a pooled browser."""

    STARTING = "starting"
    IDLE = "idle"
    LEASED = "leased"
    UNHEALTHY = "unhealthy"
    CLOSED = "closed"


class BrowserAction(str, Enum):
    """Page action types for logging."""

    NAVIGATE = "navigate"
    RELOAD = "reload"
    FILL = "fill"
    CLICK = "click"
    CHECK = "check"
    SELECT = "select"
    SCREENSHOT = "screenshot"
    EVALUATE = "evaluate"
    WAIT = "wait"


# ============================================================================
# Configuration
# ============================================================================


class BrowserConfig(BaseModel):
    """Configuration shared by every browser in the pool."""

    headless: bool = True
    max_browsers: int = Field(default=4, ge=1, le=20)
    max_pool_size: int = Field(default=20, ge=1, le=50, description="Upper bound for resizing")
    default_timeout_ms: int = Field(default=30000, ge=1000, le=120000)
    viewport_width: int = Field(default=1920, ge=320, le=3840)
    viewport_height: int = Field(default=1080, ge=240, le=2160)
    user_agent: str = DEFAULT_USER_AGENT
    disable_images: bool = False
    disable_javascript: bool = False
    launch_args: list[str] = Field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    respawn_attempts: int = Field(default=3, ge=1, le=10)
    respawn_backoff: float = Field(default=1.0, ge=0, description="Seconds, multiplied by attempt")
    health_interval: float = Field(default=60.0, ge=0.1, description="Seconds between health checks")
    lease_timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait for a free browser; None waits indefinitely"
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserConfig":
        """Build the pool configuration from application settings."""
        return cls(
            headless=settings.browser_headless,
            max_browsers=settings.browser_max_browsers,
            default_timeout_ms=settings.browser_timeout_ms,
            viewport_width=settings.browser_viewport_width,
            viewport_height=settings.browser_viewport_height,
            user_agent=settings.browser_user_agent,
            disable_images=settings.browser_disable_images,
            disable_javascript=settings.browser_disable_javascript,
            health_interval=settings.browser_health_interval,
            lease_timeout=settings.browser_lease_timeout,
        )

    def browser_args(self) -> list[str]:
        """Launch arguments including the image toggle."""
        args = list(self.launch_args)
        if self.disable_images:
            args.append("--blink-settings=imagesEnabled=false")
        return args


# ============================================================================
# Response Models
# ============================================================================


class NavigateResponse(BaseModel):
    """Response from a navigation or reload."""

    success: bool
    action: BrowserAction = BrowserAction.NAVIGATE
    url: str
    page_title: str | None = None
    duration_ms: int


class BrowserInfo(BaseModel):
    """State of one pooled browser."""

    browser_id: str
    status: BrowserStatus
    created_at: datetime
    last_leased_at: datetime | None = None
    lease_count: int = 0
    respawn_count: int = 0


class PoolHealth(BaseModel):
    """Result of probing every browser in the pool."""

    healthy: list[str] = Field(default_factory=list)
    unhealthy: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_healthy(self) -> bool:
        return not self.unhealthy and bool(self.healthy)


class PoolStatus(BaseModel):
    """Snapshot of pool occupancy."""

    target_size: int
    browsers: list[BrowserInfo] = Field(default_factory=list)
    available: int
    leased: int
