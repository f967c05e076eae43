"""Page drivers for browser automation backends."""

from src.browser_service.adapters.base import PageDriver
from src.browser_service.adapters.playwright_adapter import PlaywrightPageDriver

__all__ = [
    "PageDriver",
    "PlaywrightPageDriver",
]
