"""Playwright page driver used by the browser pool."""

import logging
import time
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.automation.exceptions import FieldFillError, NavigationError, SelectorNotFoundError
from src.browser_service.adapters.base import PageDriver
from src.browser_service.models import BrowserAction, NavigateResponse

logger = logging.getLogger(__name__)


class PlaywrightPageDriver(PageDriver):
    """Page driver backed by a Playwright page.

    The page belongs to a context leased from the pool; closing the
    context is the pool's job, not the driver's.
    """

    def __init__(self, page: Page, default_timeout_ms: int = 30000) -> None:
        self._page = page
        self._default_timeout = default_timeout_ms

    @property
    def driver_name(self) -> str:
        """Return driver name."""
        return "playwright"

    @property
    def page(self) -> Page:
        """Underlying Playwright page."""
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(
        self, url: str, wait_until: str = "networkidle", timeout_ms: int | None = None
    ) -> NavigateResponse:
        """Navigate to URL."""
        start = time.time()
        try:
            response = await self._page.goto(
                url,
                wait_until=wait_until,  # type: ignore
                timeout=timeout_ms or self._default_timeout,
            )
        except PlaywrightError as e:
            logger.error(f"Navigation to {url} failed: {e}")
            raise NavigationError(url, str(e)) from e

        if response is not None and response.status >= 500:
            # 5xx is treated as a temporary server problem
            raise NavigationError(url, f"temporary server error HTTP {response.status}")

        duration = int((time.time() - start) * 1000)
        return NavigateResponse(
            success=True,
            duration_ms=duration,
            url=self._page.url,
            page_title=await self._page.title(),
        )

    async def reload(self, wait_until: str = "networkidle") -> NavigateResponse:
        """Reload current page."""
        start = time.time()
        try:
            await self._page.reload(wait_until=wait_until)  # type: ignore
        except PlaywrightError as e:
            raise NavigationError(self._page.url, str(e)) from e

        return NavigateResponse(
            success=True,
            action=BrowserAction.RELOAD,
            duration_ms=int((time.time() - start) * 1000),
            url=self._page.url,
            page_title=await self._page.title(),
        )

    async def wait_for_selector(
        self, selector: str, state: str = "visible", timeout_ms: int | None = None
    ) -> None:
        """Wait for element state."""
        try:
            await self._page.wait_for_selector(
                selector,
                state=state,  # type: ignore
                timeout=timeout_ms or self._default_timeout,
            )
        except PlaywrightTimeoutError as e:
            raise SelectorNotFoundError(selector, f"element not {state} in time") from e
        except PlaywrightError as e:
            raise SelectorNotFoundError(selector, str(e)) from e

    async def fill(self, selector: str, value: str) -> None:
        """Fill a text-like field."""
        try:
            await self._page.fill(selector, value)
        except PlaywrightError as e:
            logger.error(f"Fill failed for {selector}: {e}")
            raise FieldFillError(selector, str(e)) from e

    async def click(self, selector: str) -> None:
        """Click an element."""
        try:
            await self._page.click(selector)
        except PlaywrightError as e:
            logger.error(f"Click failed for {selector}: {e}")
            raise FieldFillError(selector, str(e)) from e

    async def check(self, selector: str) -> None:
        """Check a checkbox or radio."""
        try:
            await self._page.check(selector)
        except PlaywrightError as e:
            raise FieldFillError(selector, str(e)) from e

    async def select_option(self, selector: str, value: str) -> list[str]:
        """Select an option by value or label."""
        try:
            return await self._page.select_option(selector, value)
        except PlaywrightError as e:
            raise FieldFillError(selector, str(e)) from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Execute JavaScript."""
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def screenshot(self, path: str, full_page: bool = False) -> str:
        """Take screenshot."""
        await self._page.screenshot(path=path, full_page=full_page)
        return path

    async def title(self) -> str:
        """Get page title."""
        return await self._page.title()

    async def count(self, selector: str) -> int:
        """Count matches using Playwright's own selector engine."""
        try:
            return await self._page.locator(selector).count()
        except PlaywrightError:
            # Malformed selector
            return 0
