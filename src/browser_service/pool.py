"""Browser pool lifecycle management."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from playwright.async_api import Browser, async_playwright

from src.automation.exceptions import PoolFailureError, ResourceExhaustionError
from src.browser_service.adapters.base import PageDriver
from src.browser_service.adapters.playwright_adapter import PlaywrightPageDriver
from src.browser_service.models import (
    BrowserConfig,
    BrowserInfo,
    BrowserStatus,
    PoolHealth,
    PoolStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BrowserLauncher = Callable[[BrowserConfig], Awaitable[Browser]]
PageTask = Callable[[PageDriver], Awaitable[T]]

# Usage percentages that drive pool resizing
SHRINK_USAGE_PERCENT = 80.0
GROW_USAGE_PERCENT = 50.0


class PooledBrowser:
    """A browser process owned by the pool."""

    def __init__(self, browser: Browser) -> None:
        self.browser = browser
        self.respawn_lock = asyncio.Lock()
        self.info = BrowserInfo(
            browser_id=uuid.uuid4().hex[:8],
            status=BrowserStatus.IDLE,
            created_at=datetime.utcnow(),
        )

    @property
    def browser_id(self) -> str:
        return self.info.browser_id

    def is_connected(self) -> bool:
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False


class BrowserPool:
    """Pool of long-lived browsers handing out isolated page contexts.

    Browsers wait in a single asyncio queue; leasing a page takes one
    browser from the queue, opens a fresh context on it and returns the
    browser when the context closes. The queue is the only admission
    gate, so at most ``size`` pages are open at any time.
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        launcher: BrowserLauncher | None = None,
    ) -> None:
        """Initialize pool state.

        Args:
            config: Pool configuration
            launcher: Coroutine launching one browser; defaults to Playwright chromium
        """
        self.config = config or BrowserConfig()
        self._launcher = launcher
        self._playwright: Any = None
        self._available: asyncio.Queue[PooledBrowser | None] = asyncio.Queue()
        self._browsers: dict[str, PooledBrowser] = {}
        self._target_size = self.config.max_browsers
        self._pending_retirements = 0
        self._resize_lock = asyncio.Lock()
        self._health_task: asyncio.Task | None = None
        self._started = False

    @property
    def size(self) -> int:
        """Current target number of browsers."""
        return self._target_size

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Launch the configured number of browsers and start health checks."""
        if self._started:
            return

        logger.info(
            f"Starting browser pool (size={self._target_size}, headless={self.config.headless})"
        )
        if self._launcher is None:
            self._playwright = await async_playwright().start()

        for _ in range(self._target_size):
            handle = await self._spawn()
            self._available.put_nowait(handle)

        self._started = True
        self._health_task = asyncio.create_task(self._health_loop())
        logger.info(f"Browser pool started with {len(self._browsers)} browsers")

    async def stop(self) -> None:
        """Stop health checks and close every browser."""
        logger.info("Stopping browser pool")
        self._started = False

        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        for handle in list(self._browsers.values()):
            await self._close_browser(handle)
        self._browsers.clear()

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        logger.info("Browser pool stopped")

    # ========================================================================
    # Leasing
    # ========================================================================

    @asynccontextmanager
    async def page(self) -> AsyncIterator[PageDriver]:
        """Lease a fresh isolated page.

        The context is closed and the browser returned on every exit
        path, including exceptions and task cancellation.
        """
        handle = await self._acquire()
        context = None
        try:
            context = await handle.browser.new_context(**self._context_options())
            context.set_default_timeout(self.config.default_timeout_ms)
            page = await context.new_page()
            yield PlaywrightPageDriver(page, self.config.default_timeout_ms)
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.warning(f"Error closing context on browser {handle.browser_id}: {e}")
            await asyncio.shield(self._release(handle))

    async def execute_in_parallel(self, tasks: list[PageTask]) -> list[Any]:
        """Run page tasks concurrently, at most pool-size at a time.

        Args:
            tasks: Callables receiving a leased page

        Returns:
            Results or raised exceptions, in input order
        """

        async def _run(task: PageTask) -> Any:
            async with self.page() as page:
                return await task(page)

        return await asyncio.gather(*(_run(task) for task in tasks), return_exceptions=True)

    async def _acquire(self) -> PooledBrowser:
        if not self._started:
            raise PoolFailureError("Browser pool is not running")

        while True:
            handle = await self._next_handle()
            if handle is None:
                # Sentinel: every slot is gone; wake the next waiter too
                self._available.put_nowait(None)
                raise PoolFailureError("No browsers left in the pool")
            if handle.info.status == BrowserStatus.CLOSED:
                continue
            if self._pending_retirements > 0:
                self._pending_retirements -= 1
                await self._retire(handle)
                continue
            if handle.info.status == BrowserStatus.UNHEALTHY or not handle.is_connected():
                if not await self._try_respawn(handle):
                    continue

            handle.info.status = BrowserStatus.LEASED
            handle.info.last_leased_at = datetime.utcnow()
            handle.info.lease_count += 1
            return handle

    async def _next_handle(self) -> PooledBrowser | None:
        timeout = self.config.lease_timeout
        if timeout is None:
            return await self._available.get()
        try:
            return await asyncio.wait_for(self._available.get(), timeout)
        except asyncio.TimeoutError:
            raise ResourceExhaustionError(
                f"No browser became free within {timeout:.1f}s (pool saturated)"
            )

    async def _release(self, handle: PooledBrowser) -> None:
        if not self._started or handle.info.status == BrowserStatus.CLOSED:
            return

        if self._pending_retirements > 0:
            self._pending_retirements -= 1
            await self._retire(handle)
            return

        if handle.info.status == BrowserStatus.UNHEALTHY or not handle.is_connected():
            logger.warning(f"Browser {handle.browser_id} disconnected during lease")
            if not await self._try_respawn(handle):
                return

        handle.info.status = BrowserStatus.IDLE
        self._available.put_nowait(handle)

    def _context_options(self) -> dict[str, Any]:
        return {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            "user_agent": self.config.user_agent,
            "java_script_enabled": not self.config.disable_javascript,
        }

    # ========================================================================
    # Spawning and supervision
    # ========================================================================

    async def _launch(self) -> Browser:
        if self._launcher is not None:
            return await self._launcher(self.config)
        return await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=self.config.browser_args(),
        )

    async def _launch_with_backoff(self) -> Browser:
        last_error: Exception | None = None
        for attempt in range(1, self.config.respawn_attempts + 1):
            try:
                return await self._launch()
            except Exception as e:
                last_error = e
                logger.warning(f"Browser launch attempt {attempt} failed: {e}")
                if attempt < self.config.respawn_attempts:
                    await asyncio.sleep(self.config.respawn_backoff * attempt)
        raise PoolFailureError(
            f"Failed to launch browser after {self.config.respawn_attempts} attempts: {last_error}"
        )

    async def _spawn(self) -> PooledBrowser:
        handle = PooledBrowser(await self._launch_with_backoff())
        self._browsers[handle.browser_id] = handle
        logger.debug(f"Launched browser {handle.browser_id}")
        return handle

    async def _try_respawn(self, handle: PooledBrowser) -> bool:
        """Replace a dead browser in place; drop the slot if that fails.

        One respawn runs per slot at a time. A caller that waited on
        another's respawn reuses its browser instead of launching again.
        """
        async with handle.respawn_lock:
            if handle.info.status == BrowserStatus.CLOSED:
                return False
            if handle.info.status != BrowserStatus.UNHEALTHY and handle.is_connected():
                return True

            await self._close_browser(handle, keep_slot=True)
            try:
                handle.browser = await self._launch_with_backoff()
            except PoolFailureError as e:
                logger.error(f"Dropping browser slot {handle.browser_id}: {e}")
                self._drop(handle)
                return False

            handle.info.respawn_count += 1
            handle.info.status = BrowserStatus.IDLE
            logger.info(f"Respawned browser {handle.browser_id}")
            return True

    def _drop(self, handle: PooledBrowser) -> None:
        handle.info.status = BrowserStatus.CLOSED
        self._browsers.pop(handle.browser_id, None)
        if not self._browsers:
            logger.error("Browser pool has no browsers left")
            self._available.put_nowait(None)

    async def _retire(self, handle: PooledBrowser) -> None:
        logger.info(f"Retiring browser {handle.browser_id}")
        await self._close_browser(handle)
        self._browsers.pop(handle.browser_id, None)

    async def _close_browser(self, handle: PooledBrowser, keep_slot: bool = False) -> None:
        try:
            await handle.browser.close()
        except Exception as e:
            logger.debug(f"Error closing browser {handle.browser_id}: {e}")
        if not keep_slot:
            handle.info.status = BrowserStatus.CLOSED

    async def health_check(self) -> PoolHealth:
        """Probe every browser by opening and closing a throwaway context."""
        health = PoolHealth()
        for handle in list(self._browsers.values()):
            try:
                if not handle.is_connected():
                    raise PoolFailureError("browser disconnected")
                context = await handle.browser.new_context()
                await context.close()
                health.healthy.append(handle.browser_id)
            except Exception as e:
                logger.warning(f"Browser {handle.browser_id} failed health check: {e}")
                # Leased browsers keep their status; release checks the connection
                if handle.info.status != BrowserStatus.LEASED:
                    handle.info.status = BrowserStatus.UNHEALTHY
                health.unhealthy.append(handle.browser_id)
        return health

    async def respawn_unhealthy(self) -> PoolHealth:
        """Health-check the pool and replace idle browsers that failed.

        Leased browsers that failed are replaced when their lease ends.
        """
        health = await self.health_check()
        for browser_id in health.unhealthy:
            handle = self._browsers.get(browser_id)
            if handle is not None and handle.info.status == BrowserStatus.UNHEALTHY:
                await self._try_respawn(handle)
        return health

    async def _health_loop(self) -> None:
        """Background task that keeps the pool populated with live browsers."""
        while True:
            try:
                await asyncio.sleep(self.config.health_interval)
                await self.respawn_unhealthy()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in browser health loop: {e}")

    # ========================================================================
    # Sizing
    # ========================================================================

    async def resize(self, new_size: int) -> int:
        """Grow or shrink the pool to ``new_size`` browsers.

        Shrinking retires browsers as they come back to the queue.
        """
        new_size = max(1, min(new_size, self.config.max_pool_size))
        async with self._resize_lock:
            delta = new_size - self._target_size
            if delta > 0:
                for _ in range(delta):
                    # Cancel retirements first, launch only the remainder
                    if self._pending_retirements > 0:
                        self._pending_retirements -= 1
                    else:
                        self._available.put_nowait(await self._spawn())
            elif delta < 0:
                self._pending_retirements += -delta
            self._target_size = new_size

        logger.info(f"Browser pool resized to {new_size}")
        return new_size

    async def optimize_concurrency(self, snapshot: Any) -> int:
        """Nudge the pool size by one based on a resource snapshot.

        Args:
            snapshot: Object with ``cpu_percent`` and ``memory_percent``

        Returns:
            The resulting target size
        """
        cpu = snapshot.cpu_percent
        memory = snapshot.memory_percent
        if cpu > SHRINK_USAGE_PERCENT or memory > SHRINK_USAGE_PERCENT:
            target = self._target_size - 1
        elif cpu < GROW_USAGE_PERCENT and memory < GROW_USAGE_PERCENT:
            target = self._target_size + 1
        else:
            return self._target_size

        target = max(1, min(target, self.config.max_pool_size))
        if target == self._target_size or not self._started:
            return self._target_size
        return await self.resize(target)

    def status(self) -> PoolStatus:
        """Current occupancy of the pool."""
        infos = [handle.info.model_copy() for handle in self._browsers.values()]
        leased = sum(1 for info in infos if info.status == BrowserStatus.LEASED)
        return PoolStatus(
            target_size=self._target_size,
            browsers=infos,
            available=len(infos) - leased,
            leased=leased,
        )


# Global browser pool instance
_browser_pool: BrowserPool | None = None


def get_browser_pool() -> BrowserPool:
    """Get the global browser pool instance.

    Returns:
        BrowserPool instance
    """
    global _browser_pool
    if _browser_pool is None:
        from src.config import settings

        _browser_pool = BrowserPool(BrowserConfig.from_settings(settings))
    return _browser_pool


async def init_browser_pool() -> BrowserPool:
    """Initialize and start the global browser pool.

    Returns:
        Started BrowserPool instance
    """
    pool = get_browser_pool()
    await pool.start()
    return pool


async def shutdown_browser_pool() -> None:
    """Shutdown the global browser pool."""
    global _browser_pool
    if _browser_pool:
        await _browser_pool.stop()
        _browser_pool = None
