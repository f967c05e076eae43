"""
Concurrent execution of form-filling sessions.

Each session URL becomes an asyncio task. Tasks pass through three
gates before touching a browser: the job's pause gate, the engine's
concurrency limiter (resized by an independent monitoring task) and,
with auto-adjust on, a self-throttle when a live resource sample is
over threshold. A paused job holds no limiter slots.
Transient failures are retried with linear backoff; every URL ends up
with exactly one result on the session.
"""

import asyncio
import json
import logging
import time
from pathlib import Path

from pydantic import BaseModel, Field

from src.automation.exceptions import (
    AutofillError,
    FormNotFoundError,
    InvalidURLError,
    JobNotFoundError,
    NavigationError,
    PoolFailureError,
    ResourceExhaustionError,
    SelectorNotFoundError,
    SubmissionError,
    TemplateNotFoundError,
    is_transient_error,
)
from src.automation.field_mapper import FieldMapper
from src.automation.form_detector import DetectorConfig, FormDetector
from src.automation.form_filler import FillerConfig, FormFiller
from src.automation.limiter import ConcurrencyLimiter
from src.automation.models import FormAnalysisResult, FormTemplate, ProfileData, ProfileFillResult
from src.automation.profile_form_filler import ProfileFillerConfig, ProfileFormFiller
from src.automation.resource_monitor import ResourceMonitor, ResourceSnapshot, cpu_count
from src.automation.session import (
    ErrorSeverity,
    ExecutionError,
    ExecutionResult,
    ExecutionSession,
    ResultStatus,
)
from src.automation.template_repository import TemplateRepository
from src.browser_service.pool import BrowserPool
from src.config import Settings

logger = logging.getLogger(__name__)

# Usage above threshold x this factor makes a task back off before starting
OVERLOAD_FACTOR = 1.2

ERROR_TYPES: dict[type[Exception], tuple[str, ErrorSeverity]] = {
    NavigationError: ("navigation_error", ErrorSeverity.HIGH),
    SelectorNotFoundError: ("selector_not_found", ErrorSeverity.MEDIUM),
    FormNotFoundError: ("form_not_found", ErrorSeverity.MEDIUM),
    TemplateNotFoundError: ("template_not_found", ErrorSeverity.MEDIUM),
    InvalidURLError: ("invalid_url", ErrorSeverity.MEDIUM),
    SubmissionError: ("submission_error", ErrorSeverity.HIGH),
    PoolFailureError: ("pool_failure", ErrorSeverity.CRITICAL),
    ResourceExhaustionError: ("resource_exhaustion", ErrorSeverity.MEDIUM),
}


def default_max_concurrency() -> int:
    """Two tasks per core, capped at 10."""
    return max(1, min(cpu_count() * 2, 10))


class ResourceThresholds(BaseModel):
    """Usage limits that drive concurrency adjustment and throttling."""

    max_cpu_percent: float = Field(default=80.0, gt=0, le=100)
    max_memory_percent: float = Field(default=75.0, gt=0, le=100)
    min_free_memory_mb: int = Field(default=512, ge=0)
    max_browsers: int = Field(default=20, ge=1)


class ExecutionConfig(BaseModel):
    """Execution engine settings."""

    max_concurrency: int = Field(default_factory=default_max_concurrency, ge=1)
    auto_adjust_limits: bool = True
    thresholds: ResourceThresholds = Field(default_factory=ResourceThresholds)
    task_timeout: float = Field(default=120.0, gt=0)  # seconds per attempt
    retry_attempts: int = Field(default=3, ge=0)
    retry_backoff: float = Field(default=1.0, ge=0)  # seconds, multiplied by attempt
    delay_between_jobs: float = Field(default=1.0, ge=0)
    monitoring_interval: float = Field(default=5.0, gt=0)
    enable_screenshots: bool = True
    enable_error_recovery: bool = True
    submit_forms: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutionConfig":
        return cls(
            max_concurrency=settings.engine_max_concurrency or default_max_concurrency(),
            auto_adjust_limits=settings.engine_auto_adjust,
            thresholds=ResourceThresholds(
                max_cpu_percent=settings.engine_max_cpu_percent,
                max_memory_percent=settings.engine_max_memory_percent,
                min_free_memory_mb=settings.engine_min_free_memory_mb,
            ),
            retry_attempts=settings.engine_retry_attempts,
            retry_backoff=settings.engine_retry_backoff,
            delay_between_jobs=settings.engine_delay_between_jobs,
            monitoring_interval=settings.engine_monitoring_interval,
            enable_screenshots=settings.filler_take_screenshots,
            submit_forms=settings.engine_submit_forms,
        )


def save_execution_config(config: ExecutionConfig, path: str | Path) -> Path:
    """Persist an execution config as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.model_dump(mode="json"), f, indent=2)
    return path


def load_execution_config(path: str | Path) -> ExecutionConfig:
    """Load an execution config saved by save_execution_config."""
    with open(path, "r", encoding="utf-8") as f:
        return ExecutionConfig.model_validate(json.load(f))


def classify_error(error: BaseException) -> tuple[str, ErrorSeverity]:
    for error_class, classification in ERROR_TYPES.items():
        if isinstance(error, error_class):
            return classification
    return "execution_error", ErrorSeverity.HIGH


class ExecutionJob:
    """Runtime state of one executing session."""

    def __init__(
        self,
        session: ExecutionSession,
        profile: ProfileData,
        templates: dict[str, FormTemplate],
        config: ExecutionConfig,
    ) -> None:
        self.session = session
        self.profile = profile
        self.templates = templates
        self.config = config
        self.lock = asyncio.Lock()
        self.resume_event = asyncio.Event()
        self.resume_event.set()
        self.cancelled = False
        self.tasks: list[asyncio.Task] = []
        self.recorded: set[int] = set()
        self.semaphore = (
            asyncio.Semaphore(session.config.max_concurrency)
            if session.config.max_concurrency
            else None
        )

    @property
    def id(self) -> str:
        return self.session.id


class TaskSlot:
    """One URL task's hold on its session cap and the engine limiter.

    The slot is only held while the job is not paused, so a paused session
    never keeps engine capacity from other sessions.
    """

    def __init__(self, job: ExecutionJob, limiter: ConcurrencyLimiter) -> None:
        self.job = job
        self.limiter = limiter
        self.held = False

    async def acquire(self) -> None:
        while True:
            await self.job.resume_event.wait()
            # Session cap first so waiting tasks do not hold engine slots
            if self.job.semaphore is not None:
                await self.job.semaphore.acquire()
            try:
                await self.limiter.acquire()
            except BaseException:
                if self.job.semaphore is not None:
                    self.job.semaphore.release()
                raise
            self.held = True
            if self.job.resume_event.is_set():
                return
            # Paused while queued
            await self.release()

    async def release(self) -> None:
        if not self.held:
            return
        self.held = False
        if self.job.semaphore is not None:
            self.job.semaphore.release()
        await asyncio.shield(self.limiter.release())

    async def wait_if_paused(self) -> None:
        """Give the slot back for the duration of a pause."""
        if self.job.resume_event.is_set():
            return
        await self.release()
        await self.acquire()


class ExecutionEngine:
    """Runs sessions of URLs concurrently within resource limits."""

    def __init__(
        self,
        profile_filler: ProfileFormFiller,
        pool: BrowserPool | None = None,
        monitor: ResourceMonitor | None = None,
        config: ExecutionConfig | None = None,
    ) -> None:
        """Initialize engine state.

        Args:
            profile_filler: Per-URL worker (template lookup, detection, fill)
            pool: Browser pool nudged alongside the task limit
            monitor: Resource monitor feeding concurrency adjustments
            config: Engine settings
        """
        self.profile_filler = profile_filler
        self.pool = pool
        self.monitor = monitor or ResourceMonitor()
        self.config = config or ExecutionConfig()
        self._limiter = ConcurrencyLimiter(self.config.max_concurrency)
        self._jobs: dict[str, ExecutionJob] = {}
        self._jobs_lock = asyncio.Lock()
        self._monitor_task: asyncio.Task | None = None

    @property
    def current_concurrency(self) -> int:
        return self._limiter.limit

    async def start(self) -> None:
        """Start the resource monitoring task."""
        logger.info(
            f"Starting execution engine (concurrency={self._limiter.limit}, "
            f"auto_adjust={self.config.auto_adjust_limits})"
        )
        await self.monitor.refresh()
        if self.config.auto_adjust_limits and self._monitor_task is None:
            self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def close(self) -> None:
        """Cancel running jobs and stop monitoring."""
        logger.info("Stopping execution engine")
        for job_id in list(self._jobs):
            try:
                await self.cancel_job(job_id)
            except JobNotFoundError:
                pass

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    # ========================================================================
    # Caller API
    # ========================================================================

    async def analyze_page(self, url: str) -> FormAnalysisResult:
        return await self.profile_filler.detector.analyze_page(url)

    async def fill_form_with_profile(self, url: str, profile: ProfileData) -> ProfileFillResult:
        return await self.profile_filler.fill_form_with_profile(
            url, profile, submit=self.config.submit_forms
        )

    async def execute_session(
        self,
        session: ExecutionSession,
        profile: ProfileData,
        templates: dict[str, FormTemplate] | None = None,
    ) -> ExecutionSession:
        """Fill every URL of a session for a profile.

        Args:
            session: Pending session listing the URLs
            profile: Profile supplying values
            templates: Templates to use per URL instead of looking them up

        Returns:
            The session in a terminal state, with one result per URL

        Raises:
            InvalidStateTransitionError: If the session is not pending
        """
        job = ExecutionJob(session, profile, templates or {}, self._job_config(session))
        async with self._jobs_lock:
            if session.id in self._jobs:
                raise AutofillError(f"Session {session.id} is already executing")
            session.start()
            self._jobs[session.id] = job

        logger.info(f"Executing session {session.id}: {len(session.urls)} URLs")
        try:
            job.tasks = [
                asyncio.create_task(self._process_url(job, index, url), name=f"{session.id}:{index}")
                for index, url in enumerate(session.urls)
            ]
            outcomes = await asyncio.gather(*job.tasks, return_exceptions=True)

            for index, (url, outcome) in enumerate(zip(session.urls, outcomes)):
                if isinstance(outcome, asyncio.CancelledError):
                    await self._record_skipped(job, index, url, "cancelled")
                elif isinstance(outcome, BaseException):
                    await self._record_failure(
                        job, index, url, outcome, attempts=1, started=time.time()
                    )

            async with job.lock:
                if not job.cancelled and not session.is_completed():
                    if session.errors:
                        session.fail()
                    else:
                        session.complete()
        finally:
            pending = [task for task in job.tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            for index, url in enumerate(session.urls):
                if index not in job.recorded:
                    await self._record_skipped(job, index, url, "cancelled")
            if not session.is_completed():
                session.cancel()
            async with self._jobs_lock:
                self._jobs.pop(session.id, None)

        logger.info(
            f"Session {session.id} {session.status.value}: "
            f"{session.progress.completed_urls} completed, {session.progress.failed_urls} failed, "
            f"{session.progress.skipped_urls} skipped"
        )
        return session

    async def cancel_job(self, job_id: str) -> ExecutionSession:
        """Cancel a running job; in-flight browser operations stop at once."""
        job = await self._get_job(job_id)
        async with job.lock:
            if job.cancelled:
                return job.session
            job.cancelled = True
            job.session.cancel()
        # Release paused tasks so they observe the cancellation
        job.resume_event.set()
        for task in job.tasks:
            task.cancel()
        logger.info(f"Cancelled job {job_id}")
        return job.session

    async def pause_job(self, job_id: str) -> ExecutionSession:
        """Stop starting new URLs and retry attempts until resumed."""
        job = await self._get_job(job_id)
        async with job.lock:
            job.session.pause()
            job.resume_event.clear()
        logger.info(f"Paused job {job_id}")
        return job.session

    async def resume_job(self, job_id: str) -> ExecutionSession:
        job = await self._get_job(job_id)
        async with job.lock:
            job.session.resume()
            job.resume_event.set()
        logger.info(f"Resumed job {job_id}")
        return job.session

    async def get_active_jobs(self) -> list[ExecutionSession]:
        async with self._jobs_lock:
            return [job.session for job in self._jobs.values()]

    async def _get_job(self, job_id: str) -> ExecutionJob:
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def _job_config(self, session: ExecutionSession) -> ExecutionConfig:
        overrides = {}
        if session.config.retry_attempts is not None:
            overrides["retry_attempts"] = session.config.retry_attempts
        if session.config.delay_between_urls is not None:
            overrides["delay_between_jobs"] = session.config.delay_between_urls
        if session.config.timeout is not None:
            overrides["task_timeout"] = session.config.timeout
        if session.config.submit_forms is not None:
            overrides["submit_forms"] = session.config.submit_forms
        if session.config.take_screenshots is not None:
            overrides["enable_screenshots"] = session.config.take_screenshots
        return self.config.model_copy(update=overrides)

    # ========================================================================
    # Per-URL tasks
    # ========================================================================

    async def _process_url(self, job: ExecutionJob, index: int, url: str) -> None:
        slot = TaskSlot(job, self._limiter)
        await slot.acquire()
        try:
            await self._run_url(job, index, url, slot)
        finally:
            await slot.release()

    async def _run_url(self, job: ExecutionJob, index: int, url: str, slot: TaskSlot) -> None:
        await self._throttle_if_overloaded(job)

        async with job.lock:
            job.session.progress.current_url = url

        await self._execute_with_retry(job, index, url, slot)

        if job.config.delay_between_jobs:
            await asyncio.sleep(job.config.delay_between_jobs)

    async def _execute_with_retry(
        self, job: ExecutionJob, index: int, url: str, slot: TaskSlot
    ) -> None:
        """Run one URL, retrying transient failures with linear backoff."""
        started = time.time()
        template = job.templates.get(url)
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await asyncio.wait_for(
                    self.profile_filler.fill_form_with_profile(
                        url,
                        job.profile,
                        template=template,
                        submit=job.config.submit_forms,
                        screenshots=job.config.enable_screenshots,
                    ),
                    timeout=job.config.task_timeout,
                )
            except asyncio.TimeoutError:
                error: Exception = AutofillError(
                    f"Task timeout after {job.config.task_timeout:.0f}s on {url}"
                )
            except Exception as e:
                error = e
            else:
                await self._record_fill(job, index, url, result, attempt, started)
                return

            retryable = (
                job.config.enable_error_recovery
                and not isinstance(error, PoolFailureError)
                and is_transient_error(error)
                and attempt <= job.config.retry_attempts
            )
            if not retryable:
                await self._record_failure(job, index, url, error, attempt, started)
                return

            delay = job.config.retry_backoff * attempt
            logger.warning(
                f"Transient error on {url} (attempt {attempt}/{job.config.retry_attempts + 1}): "
                f"{error}. Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            await slot.wait_if_paused()

    async def _throttle_if_overloaded(self, job: ExecutionJob) -> None:
        if not job.config.auto_adjust_limits:
            return
        snapshot = self.monitor.get_current_resources()
        if not self.is_overloaded(snapshot):
            return
        delay = job.config.delay_between_jobs * 2
        logger.info(
            f"Resources over threshold (cpu={snapshot.cpu_percent:.0f}%, "
            f"memory={snapshot.memory_percent:.0f}%), backing off {delay:.1f}s"
        )
        await asyncio.sleep(delay)

    def is_overloaded(self, snapshot: ResourceSnapshot) -> bool:
        thresholds = self.config.thresholds
        if snapshot.cpu_percent > thresholds.max_cpu_percent * OVERLOAD_FACTOR:
            return True
        if snapshot.memory_percent > thresholds.max_memory_percent * OVERLOAD_FACTOR:
            return True
        return bool(snapshot.memory_total) and snapshot.memory_free_mb < thresholds.min_free_memory_mb

    # ========================================================================
    # Recording
    # ========================================================================

    async def _record(
        self,
        job: ExecutionJob,
        index: int,
        result: ExecutionResult,
        error: ExecutionError | None = None,
    ) -> None:
        """Store the single outcome of a URL; later outcomes for it are ignored."""
        async with job.lock:
            if index in job.recorded:
                return
            job.recorded.add(index)
            job.session.add_result(result)
            if error is not None:
                job.session.add_error(error)

    async def _record_fill(
        self,
        job: ExecutionJob,
        index: int,
        url: str,
        result: ProfileFillResult,
        attempts: int,
        started: float,
    ) -> None:
        fill = result.fill_result
        submission = result.submission_result
        submitted_ok = submission is None or submission.success

        if fill.success and submitted_ok:
            status = ResultStatus.SUCCESS
        elif fill.filled_fields > 0:
            status = ResultStatus.PARTIAL
        else:
            status = ResultStatus.FAILURE

        messages = list(fill.errors)
        if submission is not None and not submission.success:
            messages.extend(submission.error_messages or ["submission not confirmed"])
        if status == ResultStatus.FAILURE and not messages:
            messages.append("no fields could be filled")

        execution_result = ExecutionResult(
            url=url,
            status=status,
            filled_fields=fill.filled_fields,
            total_fields=fill.total_fields,
            execution_time=time.time() - started,
            error_message="; ".join(messages),
            screenshot_path=fill.screenshots[-1] if fill.screenshots else "",
            template_id=result.template_used,
            attempts=attempts,
        )
        error = None
        if status == ResultStatus.FAILURE:
            error = ExecutionError(
                url=url,
                error_type="fill_error",
                message=execution_result.error_message,
                severity=ErrorSeverity.HIGH,
                attempts=attempts,
            )
        await self._record(job, index, execution_result, error)

    async def _record_failure(
        self,
        job: ExecutionJob,
        index: int,
        url: str,
        error: BaseException,
        attempts: int,
        started: float,
    ) -> None:
        error_type, severity = classify_error(error)
        logger.error(f"Failed {url} after {attempts} attempt(s): {error}")
        await self._record(
            job,
            index,
            ExecutionResult(
                url=url,
                status=ResultStatus.FAILURE,
                execution_time=time.time() - started,
                error_message=str(error),
                attempts=attempts,
            ),
            ExecutionError(
                url=url,
                error_type=error_type,
                message=str(error),
                severity=severity,
                attempts=attempts,
            ),
        )

    async def _record_skipped(self, job: ExecutionJob, index: int, url: str, reason: str) -> None:
        await self._record(
            job,
            index,
            ExecutionResult(url=url, status=ResultStatus.SKIPPED, error_message=reason, attempts=0),
        )

    # ========================================================================
    # Concurrency adjustment
    # ========================================================================

    async def adjust_concurrency(self, snapshot: ResourceSnapshot) -> int:
        """Move the task limit one step based on a snapshot.

        Returns:
            The new limit, within [1, 4 x CPU cores]
        """
        thresholds = self.config.thresholds
        current = self._limiter.limit

        if (
            snapshot.cpu_percent > thresholds.max_cpu_percent
            or snapshot.memory_percent > thresholds.max_memory_percent
        ):
            target = current - 1
        elif (
            snapshot.cpu_percent < thresholds.max_cpu_percent * 0.5
            and snapshot.memory_percent < thresholds.max_memory_percent * 0.5
        ):
            target = current + 1
        else:
            target = current

        target = max(1, min(target, cpu_count() * 4))
        if target != current:
            await self._limiter.set_limit(target)
            logger.info(
                f"Concurrency {current} -> {target} "
                f"(cpu={snapshot.cpu_percent:.0f}%, memory={snapshot.memory_percent:.0f}%)"
            )

        if self.pool is not None and self.pool.is_running:
            await self.pool.optimize_concurrency(snapshot)
        return target

    async def _monitor_loop(self) -> None:
        """Background task that samples resources and moves the task limit."""
        while True:
            try:
                await asyncio.sleep(self.config.monitoring_interval)
                snapshot = await self.monitor.refresh()
                await self.adjust_concurrency(snapshot)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in resource monitoring loop: {e}")


def build_engine(
    pool: BrowserPool,
    repository: TemplateRepository,
    settings: Settings,
    config: ExecutionConfig | None = None,
) -> ExecutionEngine:
    """Wire detector, filler, mapper and engine from settings."""
    config = config or ExecutionConfig.from_settings(settings)
    detector = FormDetector(pool, DetectorConfig.from_settings(settings))
    filler_config = FillerConfig.from_settings(settings)
    filler_config.take_screenshots = config.enable_screenshots
    filler = FormFiller(pool, filler_config)
    profile_filler = ProfileFormFiller(
        detector,
        filler,
        repository,
        mapper=FieldMapper(),
        config=ProfileFillerConfig(verify_submission=config.submit_forms),
    )
    return ExecutionEngine(profile_filler, pool=pool, config=config)
