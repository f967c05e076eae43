"""Browser service - pooled Playwright browsers handing out isolated pages.

Provides:
- BrowserPool: long-lived browsers leased as fresh contexts
- PageDriver: the page capabilities the automation layer relies on
"""

from src.browser_service.adapters.base import PageDriver
from src.browser_service.models import (
    BrowserConfig,
    BrowserInfo,
    BrowserStatus,
    NavigateResponse,
    PoolHealth,
    PoolStatus,
)
from src.browser_service.pool import (
    BrowserPool,
    get_browser_pool,
    init_browser_pool,
    shutdown_browser_pool,
)

__all__ = [
    "BrowserConfig",
    "BrowserInfo",
    "BrowserPool",
    "BrowserStatus",
    "NavigateResponse",
    "PageDriver",
    "PoolHealth",
    "PoolStatus",
    "get_browser_pool",
    "init_browser_pool",
    "shutdown_browser_pool",
]
