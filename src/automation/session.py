"""Execution session state for batch form filling."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from src.automation.exceptions import InvalidStateTransitionError


class ExecutionStatus(str, Enum):
    """Lifecycle of a session."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ResultStatus(str, Enum):
    """Outcome of processing one URL."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    SKIPPED = "skipped"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


TERMINAL_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}

ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED},
    ExecutionStatus.RUNNING: {
        ExecutionStatus.PAUSED,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.PAUSED: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
}


class ExecutionProgress(BaseModel):
    """Counters over a session's URLs."""

    total_urls: int = 0
    completed_urls: int = 0
    failed_urls: int = 0
    skipped_urls: int = 0
    percentage: float = 0.0
    current_url: str = ""


class ExecutionResult(BaseModel):
    """Outcome for one URL."""

    url: str
    status: ResultStatus
    filled_fields: int = 0
    total_fields: int = 0
    execution_time: float = 0.0  # seconds
    error_message: str = ""
    screenshot_path: str = ""
    template_id: str = ""
    attempts: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ExecutionError(BaseModel):
    """Itemised failure recorded on a session."""

    url: str
    error_type: str
    message: str
    severity: ErrorSeverity = ErrorSeverity.HIGH
    attempts: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SessionConfig(BaseModel):
    """Per-session overrides recorded with the session."""

    max_concurrency: int | None = Field(default=None, ge=1)
    timeout: float | None = Field(default=None, gt=0)  # seconds per URL
    retry_attempts: int | None = Field(default=None, ge=0)
    delay_between_urls: float | None = Field(default=None, ge=0)
    take_screenshots: bool | None = None
    submit_forms: bool | None = None


class ExecutionSession(BaseModel):
    """A batch of URLs filled for one profile.

    Status only moves through the transition methods below.
    """

    id: str
    profile_id: str = ""
    profile_name: str = ""
    urls: list[str] = Field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    progress: ExecutionProgress = Field(default_factory=ExecutionProgress)
    results: list[ExecutionResult] = Field(default_factory=list)
    errors: list[ExecutionError] = Field(default_factory=list)
    config: SessionConfig = Field(default_factory=SessionConfig)

    def _transition(self, target: ExecutionStatus) -> None:
        if target not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidStateTransitionError(
                f"Session {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def start(self) -> None:
        self._transition(ExecutionStatus.RUNNING)
        self.start_time = datetime.utcnow()
        self.progress.total_urls = len(self.urls)

    def pause(self) -> None:
        if self.status != ExecutionStatus.RUNNING:
            raise InvalidStateTransitionError(f"Session {self.id} is not running")
        self._transition(ExecutionStatus.PAUSED)

    def resume(self) -> None:
        if self.status != ExecutionStatus.PAUSED:
            raise InvalidStateTransitionError(f"Session {self.id} is not paused")
        self._transition(ExecutionStatus.RUNNING)

    def complete(self) -> None:
        self._transition(ExecutionStatus.COMPLETED)
        self.end_time = datetime.utcnow()

    def fail(self) -> None:
        self._transition(ExecutionStatus.FAILED)
        self.end_time = datetime.utcnow()

    def cancel(self) -> None:
        self._transition(ExecutionStatus.CANCELLED)
        self.end_time = datetime.utcnow()

    def add_result(self, result: ExecutionResult) -> None:
        """Record a URL outcome and update progress."""
        self.results.append(result)
        if result.status in (ResultStatus.SUCCESS, ResultStatus.PARTIAL):
            self.progress.completed_urls += 1
        elif result.status == ResultStatus.FAILURE:
            self.progress.failed_urls += 1
        else:
            self.progress.skipped_urls += 1

        processed = (
            self.progress.completed_urls + self.progress.failed_urls + self.progress.skipped_urls
        )
        if self.progress.total_urls:
            self.progress.percentage = processed / self.progress.total_urls * 100

    def add_error(self, error: ExecutionError) -> None:
        self.errors.append(error)

    def get_success_rate(self) -> float:
        """Share of processed URLs that succeeded fully, 0-100."""
        if not self.results:
            return 0.0
        successes = sum(1 for r in self.results if r.status == ResultStatus.SUCCESS)
        return successes / len(self.results) * 100

    def get_duration(self) -> timedelta:
        if self.start_time is None:
            return timedelta(0)
        return (self.end_time or datetime.utcnow()) - self.start_time

    def is_completed(self) -> bool:
        return self.status in TERMINAL_STATUSES
