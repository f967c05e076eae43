"""Tests for resource monitoring."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from src.automation.resource_monitor import ResourceMonitor, ResourceSnapshot, scan_system

MB = 1024 * 1024
GB = 1024 * MB


def fixed_monitor(cpu: float, memory: float, **kwargs) -> ResourceMonitor:
    """Monitor whose sampler always reports the given usage."""
    return ResourceMonitor(
        sampler=lambda: ResourceSnapshot(cpu_percent=cpu, memory_percent=memory), **kwargs
    )


@pytest.fixture(autouse=True)
def two_cores():
    with patch("src.automation.resource_monitor.cpu_count", return_value=2):
        yield


class TestOptimalConcurrency:
    """Tests for get_optimal_concurrency."""

    def test_scales_down_under_pressure(self):
        """Test high CPU and memory shrink concurrency."""
        assert fixed_monitor(90, 80).get_optimal_concurrency(4) == 3

    def test_scales_up_when_idle(self):
        """Test low usage grows concurrency."""
        assert fixed_monitor(20, 30).get_optimal_concurrency(4) == 5

    def test_unchanged_in_normal_band(self):
        assert fixed_monitor(60, 60).get_optimal_concurrency(4) == 4

    def test_never_below_one(self):
        assert fixed_monitor(95, 95).get_optimal_concurrency(1) == 1

    def test_capped_at_four_per_core(self):
        """Test the result never exceeds 4 x cores."""
        assert fixed_monitor(10, 10).get_optimal_concurrency(10) == 8


class TestRecommendations:
    """Tests for get_recommendations."""

    def test_high_usage(self):
        """Test high CPU and memory each produce a decrease."""
        recommendations = fixed_monitor(90, 85).get_recommendations(4)

        assert [(r.component, r.type) for r in recommendations] == [
            ("concurrency", "decrease"),
            ("memory", "decrease"),
        ]
        assert recommendations[0].recommended == 2
        assert recommendations[1].recommended == 70

    def test_low_cpu_suggests_increase(self):
        recommendations = fixed_monitor(20, 50).get_recommendations(2)

        assert len(recommendations) == 1
        assert recommendations[0].type == "increase"
        assert recommendations[0].recommended == 3

    def test_no_increase_at_core_limit(self):
        """Test low CPU does not suggest more than 2 x cores."""
        assert fixed_monitor(20, 50).get_recommendations(4) == []


class TestHealthAndEfficiency:
    """Tests for health checks and efficiency scoring."""

    def test_healthy(self):
        assert fixed_monitor(50, 50).is_system_healthy() is True

    @pytest.mark.parametrize("cpu,memory", [(90, 50), (50, 85)])
    def test_unhealthy(self, cpu, memory):
        assert fixed_monitor(cpu, memory).is_system_healthy() is False

    def test_ideal_usage_is_fully_efficient(self):
        assert fixed_monitor(65, 60).calculate_resource_efficiency() == pytest.approx(1.0)

    def test_saturated_usage(self):
        assert fixed_monitor(100, 100).calculate_resource_efficiency() == pytest.approx(0.625)

    def test_system_info(self):
        info = fixed_monitor(50, 50).get_system_info()
        assert info["cpu_count"] == 2
        assert "python_version" in info


class TestHistory:
    """Tests for snapshot history and prediction."""

    def test_history_bounded(self):
        """Test only the newest snapshots are kept."""
        monitor = fixed_monitor(10, 10, history_size=3)
        for cpu in range(5):
            monitor.record(ResourceSnapshot(cpu_percent=cpu))

        assert [s.cpu_percent for s in monitor.history] == [2, 3, 4]
        assert monitor.latest.cpu_percent == 4

    def test_fresh_snapshot_reused(self):
        """Test a recent snapshot is returned without sampling."""
        sampler = MagicMock(return_value=ResourceSnapshot(cpu_percent=99))
        monitor = ResourceMonitor(sampler=sampler)
        monitor.record(ResourceSnapshot(cpu_percent=10))

        assert monitor.get_current_resources().cpu_percent == 10
        sampler.assert_not_called()

    def test_stale_snapshot_resampled(self):
        """Test an old snapshot triggers a new sample."""
        sampler = MagicMock(return_value=ResourceSnapshot(cpu_percent=99))
        monitor = ResourceMonitor(sampler=sampler, stale_after=timedelta(seconds=5))
        monitor.record(
            ResourceSnapshot(cpu_percent=10, timestamp=datetime.utcnow() - timedelta(seconds=30))
        )

        assert monitor.get_current_resources().cpu_percent == 99
        assert len(monitor.history) == 2

    def test_predict_follows_trend(self):
        """Test usage is extrapolated from the recent trend."""
        monitor = fixed_monitor(0, 0)
        now = datetime.utcnow()
        monitor.record(
            ResourceSnapshot(cpu_percent=20, memory_percent=40, timestamp=now - timedelta(minutes=10))
        )
        monitor.record(ResourceSnapshot(cpu_percent=30, memory_percent=50, timestamp=now))

        predicted = monitor.predict_resource_needs(5)

        assert predicted.cpu_percent == pytest.approx(35)
        assert predicted.memory_percent == pytest.approx(55)
        assert monitor.predict_resource_needs(100).cpu_percent == 100

    def test_predict_without_history(self):
        """Test prediction falls back to current usage."""
        assert fixed_monitor(42, 10).predict_resource_needs(5).cpu_percent == 42

    @pytest.mark.asyncio
    async def test_refresh_records(self):
        monitor = fixed_monitor(33, 44)

        snapshot = await monitor.refresh()

        assert snapshot.cpu_percent == 33
        assert snapshot.task_count >= 1
        assert monitor.latest is snapshot

    @pytest.mark.asyncio
    async def test_monitor_stream(self):
        """Test the stream yields a snapshot per interval."""
        monitor = fixed_monitor(10, 10)
        seen = []

        async for snapshot in monitor.monitor(0):
            seen.append(snapshot)
            if len(seen) == 3:
                break

        assert len(seen) == 3
        assert len(monitor.history) == 3


class TestScanSystem:
    """Tests for scan_system."""

    def make_psutil(self, cores: int, available_mb: int) -> MagicMock:
        fake = MagicMock()
        fake.virtual_memory.return_value = SimpleNamespace(total=16 * GB, available=available_mb * MB)
        fake.disk_usage.return_value = SimpleNamespace(total=500 * GB, free=100 * GB)
        fake.cpu_count.side_effect = lambda logical=True: cores * 2 if logical else cores
        return fake

    def test_cpu_bound_machine(self):
        """Test concurrency follows cores when memory is plentiful."""
        with patch("src.automation.resource_monitor.psutil", self.make_psutil(4, 3000)):
            system = scan_system()

        assert system.cpu_cores == 4
        assert system.cpu_threads == 8
        assert system.ram_total_mb == 16384
        assert system.disk_free_gb == 100
        assert system.optimal_sites == 6
        assert system.max_sites == 10

    def test_memory_bound_machine(self):
        """Test concurrency follows available memory when it is scarce."""
        with patch("src.automation.resource_monitor.psutil", self.make_psutil(4, 600)):
            system = scan_system()

        assert system.optimal_sites == 2
        assert system.max_sites == 2

    def test_at_least_one_site(self):
        with patch("src.automation.resource_monitor.psutil", self.make_psutil(1, 100)):
            system = scan_system()

        assert system.optimal_sites == 1
        assert system.max_sites == 1
        assert "Optimal concurrent sites: 1" in system.summary()
