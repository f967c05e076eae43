"""Tests for the browser pool."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from src.automation.exceptions import PoolFailureError, ResourceExhaustionError
from src.browser_service.adapters.playwright_adapter import PlaywrightPageDriver
from src.browser_service.models import BrowserConfig, BrowserStatus
from src.browser_service.pool import BrowserPool


class FakePage:
    url = "about:blank"


class FakeContext:
    def __init__(self) -> None:
        self.closed = False
        self.timeout = None

    def set_default_timeout(self, timeout: int) -> None:
        self.timeout = timeout

    async def new_page(self) -> FakePage:
        return FakePage()

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self) -> None:
        self.connected = True
        self.closed = False
        self.fail_contexts = False
        self.contexts: list[FakeContext] = []

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **options) -> FakeContext:
        if self.fail_contexts:
            raise RuntimeError("Target closed")
        context = FakeContext()
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeLauncher:
    """Launches fake browsers; can be switched to fail."""

    def __init__(self) -> None:
        self.launched: list[FakeBrowser] = []
        self.fail = False
        self.delay = 0.0

    async def __call__(self, config: BrowserConfig) -> FakeBrowser:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("Executable doesn't exist")
        browser = FakeBrowser()
        self.launched.append(browser)
        return browser


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest_asyncio.fixture
async def make_pool(launcher):
    pools: list[BrowserPool] = []

    async def _make(size: int = 2, **config) -> BrowserPool:
        pool = BrowserPool(
            BrowserConfig(max_browsers=size, respawn_backoff=0, **config), launcher=launcher
        )
        await pool.start()
        pools.append(pool)
        return pool

    yield _make
    for pool in pools:
        await pool.stop()


class TestLeasing:
    """Tests for page leases."""

    @pytest.mark.asyncio
    async def test_page_lease(self, make_pool, launcher):
        """Test a lease opens a context and returns the browser afterwards."""
        pool = await make_pool(size=1, default_timeout_ms=5000)

        async with pool.page() as page:
            assert isinstance(page, PlaywrightPageDriver)
            assert pool.status().leased == 1

        browser = launcher.launched[0]
        assert browser.contexts[0].closed is True
        assert browser.contexts[0].timeout == 5000
        status = pool.status()
        assert status.leased == 0
        assert status.browsers[0].lease_count == 1
        assert status.browsers[0].status == BrowserStatus.IDLE

    @pytest.mark.asyncio
    async def test_context_closed_on_error(self, make_pool, launcher):
        """Test the context is closed and the browser returned when the holder raises."""
        pool = await make_pool(size=1)

        with pytest.raises(ValueError):
            async with pool.page():
                raise ValueError("task failed")

        assert launcher.launched[0].contexts[0].closed is True
        async with pool.page():
            pass

    @pytest.mark.asyncio
    async def test_lease_before_start(self, launcher):
        pool = BrowserPool(BrowserConfig(max_browsers=1), launcher=launcher)

        with pytest.raises(PoolFailureError):
            async with pool.page():
                pass

    @pytest.mark.asyncio
    async def test_parallel_bounded_by_pool_size(self, make_pool):
        """Test no more pages are open than there are browsers."""
        pool = await make_pool(size=2)
        open_pages = 0
        peak = 0

        def make_task(value):
            async def task(page):
                nonlocal open_pages, peak
                open_pages += 1
                peak = max(peak, open_pages)
                await asyncio.sleep(0.01)
                open_pages -= 1
                if value == 3:
                    raise RuntimeError("page crashed")
                return value

            return task

        results = await pool.execute_in_parallel([make_task(i) for i in range(5)])

        assert peak == 2
        assert results[:3] == [0, 1, 2]
        assert isinstance(results[3], RuntimeError)
        assert results[4] == 4

    @pytest.mark.asyncio
    async def test_lease_timeout_when_saturated(self, make_pool):
        """Test waiting past the lease timeout reports pool saturation."""
        pool = await make_pool(size=1, lease_timeout=0.05)

        async with pool.page():
            with pytest.raises(ResourceExhaustionError):
                async with pool.page():
                    pass

        async with pool.page():
            assert pool.status().leased == 1


class TestRespawn:
    """Tests for replacing dead browsers."""

    @pytest.mark.asyncio
    async def test_disconnected_browser_respawned_on_lease(self, make_pool, launcher):
        pool = await make_pool(size=1)
        launcher.launched[0].connected = False

        async with pool.page():
            pass

        assert len(launcher.launched) == 2
        assert pool.status().browsers[0].respawn_count == 1

    @pytest.mark.asyncio
    async def test_browser_lost_during_lease(self, make_pool, launcher):
        """Test a browser that dies mid-lease is replaced on release."""
        pool = await make_pool(size=1)

        async with pool.page():
            launcher.launched[0].connected = False

        assert len(launcher.launched) == 2
        assert pool.status().available == 1

    @pytest.mark.asyncio
    async def test_unrecoverable_slot_dropped(self, make_pool, launcher):
        """Test leasing fails once every slot is gone."""
        pool = await make_pool(size=1, respawn_attempts=2)
        launcher.launched[0].connected = False
        launcher.fail = True

        with pytest.raises(PoolFailureError):
            async with pool.page():
                pass
        with pytest.raises(PoolFailureError):
            async with pool.page():
                pass

        assert pool.status().browsers == []

    @pytest.mark.asyncio
    async def test_start_fails_when_launch_fails(self, launcher):
        launcher.fail = True
        pool = BrowserPool(
            BrowserConfig(max_browsers=1, respawn_attempts=1, respawn_backoff=0), launcher=launcher
        )

        with pytest.raises(PoolFailureError):
            await pool.start()
        assert pool.is_running is False

    @pytest.mark.asyncio
    async def test_health_check_and_repair(self, make_pool, launcher):
        """Test failing browsers are reported and replaced."""
        pool = await make_pool(size=2)
        launcher.launched[1].fail_contexts = True

        health = await pool.respawn_unhealthy()

        assert len(health.healthy) == 1
        assert len(health.unhealthy) == 1
        assert health.is_healthy is False
        assert len(launcher.launched) == 3
        assert (await pool.health_check()).is_healthy is True

    @pytest.mark.asyncio
    async def test_concurrent_respawns_launch_once(self, make_pool, launcher):
        """Test a lease waiting on a running repair reuses its browser."""
        pool = await make_pool(size=1)
        launcher.launched[0].connected = False
        launcher.delay = 0.05

        repair = asyncio.create_task(pool.respawn_unhealthy())
        await asyncio.sleep(0.01)
        async with pool.page():
            pass
        await repair

        assert len(launcher.launched) == 2
        live = [browser for browser in launcher.launched if not browser.closed]
        assert len(live) == 1
        assert pool._browsers[pool.status().browsers[0].browser_id].browser is live[0]
        assert pool.status().browsers[0].respawn_count == 1


class TestSizing:
    """Tests for pool resizing."""

    @pytest.mark.asyncio
    async def test_shrink_retires_returning_browsers(self, make_pool):
        pool = await make_pool(size=3)

        assert await pool.resize(1) == 1
        async with pool.page():
            pass

        assert pool.size == 1
        assert len(pool.status().browsers) == 1

    @pytest.mark.asyncio
    async def test_grow_launches_browsers(self, make_pool, launcher):
        pool = await make_pool(size=1)

        await pool.resize(3)

        assert len(launcher.launched) == 3
        assert pool.status().available == 3

    @pytest.mark.asyncio
    async def test_resize_clamped(self, make_pool):
        pool = await make_pool(size=1, max_pool_size=3)

        assert await pool.resize(10) == 3
        assert await pool.resize(0) == 1

    @pytest.mark.asyncio
    async def test_optimize_concurrency(self, make_pool):
        """Test the pool moves one step with resource pressure."""
        pool = await make_pool(size=2)

        assert await pool.optimize_concurrency(SimpleNamespace(cpu_percent=90, memory_percent=10)) == 1
        assert await pool.optimize_concurrency(SimpleNamespace(cpu_percent=60, memory_percent=60)) == 1
        assert await pool.optimize_concurrency(SimpleNamespace(cpu_percent=10, memory_percent=10)) == 2

    @pytest.mark.asyncio
    async def test_stop_closes_browsers(self, launcher):
        pool = BrowserPool(BrowserConfig(max_browsers=2), launcher=launcher)
        await pool.start()

        await pool.stop()

        assert pool.is_running is False
        assert all(browser.closed for browser in launcher.launched)
        assert pool.status().browsers == []
