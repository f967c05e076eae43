"""FastAPI dependencies."""

import asyncio
import logging
from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.automation.execution_engine import ExecutionEngine
from src.automation.session import ExecutionSession
from src.automation.template_repository import TemplateRepository
from src.browser_service.pool import BrowserPool

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Sessions started through the API, running or finished.

    Only the ``max_finished`` most recently ended sessions are kept.
    """

    def __init__(self, max_finished: int = 100) -> None:
        self.max_finished = max_finished
        self._sessions: dict[str, ExecutionSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def add(self, session: ExecutionSession, task: asyncio.Task | None = None) -> None:
        self._sessions[session.id] = session
        self._evict_finished()
        if task is not None:
            self._tasks[session.id] = task
            task.add_done_callback(lambda _: self._tasks.pop(session.id, None))

    def _evict_finished(self) -> None:
        finished = [s for s in self._sessions.values() if s.is_completed()]
        excess = len(finished) - self.max_finished
        if excess <= 0:
            return
        finished.sort(key=lambda s: s.end_time or datetime.min)
        for session in finished[:excess]:
            del self._sessions[session.id]
        logger.debug(f"Evicted {excess} finished sessions")

    def get(self, session_id: str) -> ExecutionSession | None:
        return self._sessions.get(session_id)

    def list(self) -> list[ExecutionSession]:
        return sorted(
            self._sessions.values(),
            key=lambda s: s.start_time.timestamp() if s.start_time else 0.0,
            reverse=True,
        )

    async def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)


class AutomationContext:
    """Components shared by the API routes."""

    def __init__(
        self,
        engine: ExecutionEngine,
        repository: TemplateRepository,
        pool: BrowserPool | None = None,
        sessions: SessionRegistry | None = None,
    ) -> None:
        self.engine = engine
        self.repository = repository
        self.pool = pool
        self.sessions = sessions or SessionRegistry()


def get_automation(request: Request) -> AutomationContext:
    """
    Dependency to get the automation components.

    Raises HTTPException 503 while the application is starting up.
    """
    context = getattr(request.app.state, "automation", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Automation engine is not running",
        )
    return context


AutomationDep = Annotated[AutomationContext, Depends(get_automation)]
