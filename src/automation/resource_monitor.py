"""System resource sampling and concurrency recommendations."""

import asyncio
import logging
import os
import platform
import sys
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta

import psutil
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
STALE_AFTER = timedelta(seconds=5)

# Health limits
HEALTHY_MAX_CPU = 85.0
HEALTHY_MAX_MEMORY = 80.0
HEALTHY_MAX_TASKS = 10000

# Usage considered efficient
IDEAL_CPU = 65.0
IDEAL_MEMORY = 60.0

# Rough memory cost of one browser context, in MB
BROWSER_MEMORY_MB = 300
BROWSER_MEMORY_MIN_MB = 250


class ResourceSnapshot(BaseModel):
    """Point-in-time system usage."""

    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    memory_total: int = 0  # bytes
    memory_used: int = 0
    memory_free: int = 0
    process_memory: int = 0  # RSS of this process, bytes
    task_count: int = 0  # asyncio tasks on the engine's loop
    thread_count: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def memory_free_mb(self) -> float:
        return self.memory_free / (1024 * 1024)


class ResourceRecommendation(BaseModel):
    """Suggested change to a tunable."""

    type: str  # increase, decrease, maintain
    component: str  # concurrency, memory
    current: int
    recommended: int
    reason: str
    confidence: float = Field(ge=0, le=1)


class SystemSpecification(BaseModel):
    """Hardware summary with suggested site concurrency."""

    cpu_cores: int
    cpu_threads: int
    ram_total_mb: int
    ram_available_mb: int
    disk_total_gb: int
    disk_free_gb: int
    operating_system: str
    optimal_sites: int
    max_sites: int
    scan_time: datetime = Field(default_factory=datetime.utcnow)

    def summary(self) -> str:
        return (
            f"CPU: {self.cpu_cores} cores / {self.cpu_threads} threads\n"
            f"RAM: {self.ram_available_mb} MB available of {self.ram_total_mb} MB\n"
            f"Disk: {self.disk_free_gb} GB free of {self.disk_total_gb} GB\n"
            f"OS: {self.operating_system}\n"
            f"Optimal concurrent sites: {self.optimal_sites}\n"
            f"Maximum concurrent sites: {self.max_sites} (not recommended for regular use)"
        )


def cpu_count() -> int:
    return os.cpu_count() or 1


def sample_system() -> ResourceSnapshot:
    """Read current usage with psutil. Non-blocking CPU measurement."""
    memory = psutil.virtual_memory()
    process = psutil.Process()
    return ResourceSnapshot(
        cpu_percent=psutil.cpu_percent(interval=None),
        memory_percent=memory.percent,
        memory_total=memory.total,
        memory_used=memory.used,
        memory_free=memory.available,
        process_memory=process.memory_info().rss,
        thread_count=threading.active_count(),
    )


def scan_system(disk_path: str = "/") -> SystemSpecification:
    """Measure the machine and suggest how many sites to run at once."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_path)
    cores = psutil.cpu_count(logical=False) or cpu_count()
    threads = psutil.cpu_count(logical=True) or cores
    available_mb = int(memory.available / (1024 * 1024))

    optimal = int(min(cores * 1.5, available_mb / BROWSER_MEMORY_MB))
    maximum = int(min(cores * 2.5, available_mb / BROWSER_MEMORY_MIN_MB))

    return SystemSpecification(
        cpu_cores=cores,
        cpu_threads=threads,
        ram_total_mb=int(memory.total / (1024 * 1024)),
        ram_available_mb=available_mb,
        disk_total_gb=int(disk.total / (1024**3)),
        disk_free_gb=int(disk.free / (1024**3)),
        operating_system=f"{platform.system()} {platform.release()}",
        optimal_sites=max(1, min(optimal, 20)),
        max_sites=max(1, min(maximum, 30)),
    )


class ResourceMonitor:
    """Keeps a bounded history of resource snapshots and advises on concurrency.

    Sampling is cheap and never blocks task dispatch; the engine runs it
    from its own periodic task through ``refresh``.
    """

    def __init__(
        self,
        sampler: Callable[[], ResourceSnapshot] | None = None,
        history_size: int = HISTORY_SIZE,
        stale_after: timedelta = STALE_AFTER,
    ) -> None:
        self._sampler = sampler or sample_system
        self._history: deque[ResourceSnapshot] = deque(maxlen=history_size)
        self._stale_after = stale_after

    @property
    def history(self) -> list[ResourceSnapshot]:
        """Snapshots, oldest first."""
        return list(self._history)

    @property
    def latest(self) -> ResourceSnapshot | None:
        return self._history[-1] if self._history else None

    def record(self, snapshot: ResourceSnapshot) -> ResourceSnapshot:
        self._history.append(snapshot)
        return snapshot

    def sample(self) -> ResourceSnapshot:
        """Take and record a snapshot synchronously."""
        snapshot = self._sampler()
        snapshot.task_count = _running_task_count()
        return self.record(snapshot)

    async def refresh(self) -> ResourceSnapshot:
        """Take and record a snapshot without blocking the event loop."""
        snapshot = await asyncio.to_thread(self._sampler)
        snapshot.task_count = _running_task_count()
        return self.record(snapshot)

    def get_current_resources(self) -> ResourceSnapshot:
        """Latest snapshot, re-sampled when older than the staleness window."""
        latest = self.latest
        if latest is None or datetime.utcnow() - latest.timestamp > self._stale_after:
            return self.sample()
        return latest

    def get_optimal_concurrency(self, current: int) -> int:
        """Scale the current concurrency by CPU and memory pressure.

        Returns:
            A value in [1, 4 x CPU cores]
        """
        resources = self.get_current_resources()

        cpu_factor = 1.0
        if resources.cpu_percent > 80:
            cpu_factor = 0.7
        elif resources.cpu_percent < 40:
            cpu_factor = 1.3

        memory_factor = 1.0
        if resources.memory_percent > 75:
            memory_factor = 0.8
        elif resources.memory_percent < 50:
            memory_factor = 1.2

        optimal = int(current * (cpu_factor + memory_factor) / 2)
        return max(1, min(optimal, cpu_count() * 4))

    def get_recommendations(self, current: int) -> list[ResourceRecommendation]:
        resources = self.get_current_resources()
        recommendations: list[ResourceRecommendation] = []

        if resources.cpu_percent > 85:
            recommendations.append(
                ResourceRecommendation(
                    type="decrease",
                    component="concurrency",
                    current=current,
                    recommended=max(1, current - 2),
                    reason="High CPU usage detected",
                    confidence=0.8,
                )
            )
        elif resources.cpu_percent < 30 and current < cpu_count() * 2:
            recommendations.append(
                ResourceRecommendation(
                    type="increase",
                    component="concurrency",
                    current=current,
                    recommended=current + 1,
                    reason="Low CPU usage, can handle more load",
                    confidence=0.6,
                )
            )

        if resources.memory_percent > 80:
            recommendations.append(
                ResourceRecommendation(
                    type="decrease",
                    component="memory",
                    current=int(resources.memory_percent),
                    recommended=70,
                    reason="High memory usage detected",
                    confidence=0.9,
                )
            )

        return recommendations

    def is_system_healthy(self) -> bool:
        resources = self.get_current_resources()
        return (
            resources.cpu_percent < HEALTHY_MAX_CPU
            and resources.memory_percent < HEALTHY_MAX_MEMORY
            and resources.task_count < HEALTHY_MAX_TASKS
        )

    def get_system_info(self) -> dict:
        return {
            "cpu_count": cpu_count(),
            "python_version": sys.version.split()[0],
            "os": platform.system(),
            "arch": platform.machine(),
            "tasks": _running_task_count(),
            "threads": threading.active_count(),
            "timestamp": datetime.utcnow().isoformat(),
        }

    def calculate_resource_efficiency(self) -> float:
        """How close usage is to the ideal band, from 0 to 1."""
        resources = self.get_current_resources()
        cpu_efficiency = 1.0 - abs(resources.cpu_percent - IDEAL_CPU) / 100.0
        memory_efficiency = 1.0 - abs(resources.memory_percent - IDEAL_MEMORY) / 100.0
        return max(0.0, (cpu_efficiency + memory_efficiency) / 2)

    def predict_resource_needs(self, minutes_ahead: int) -> ResourceSnapshot:
        """Project CPU and memory usage with the trend of the last 10 snapshots.

        Falls back to current usage when there is not enough history.
        """
        history = self.history
        if len(history) < 2:
            return self.get_current_resources()

        recent = history[-1]
        older = history[max(0, len(history) - 10)]
        elapsed = (recent.timestamp - older.timestamp).total_seconds() / 60
        if elapsed == 0:
            return recent

        cpu_trend = (recent.cpu_percent - older.cpu_percent) / elapsed
        memory_trend = (recent.memory_percent - older.memory_percent) / elapsed

        return recent.model_copy(
            update={
                "cpu_percent": _clamp_percent(recent.cpu_percent + cpu_trend * minutes_ahead),
                "memory_percent": _clamp_percent(recent.memory_percent + memory_trend * minutes_ahead),
                "timestamp": datetime.utcnow() + timedelta(minutes=minutes_ahead),
            }
        )

    async def monitor(self, interval: float) -> AsyncIterator[ResourceSnapshot]:
        """Yield a fresh snapshot every ``interval`` seconds until the consumer stops."""
        while True:
            yield await self.refresh()
            await asyncio.sleep(interval)


def _running_task_count() -> int:
    try:
        return len(asyncio.all_tasks())
    except RuntimeError:
        # No running loop in this thread
        return 0


def _clamp_percent(value: float) -> float:
    return max(0.0, min(value, 100.0))
