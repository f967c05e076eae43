"""Batch session routes."""

import asyncio
import logging
import uuid

from fastapi import APIRouter, HTTPException, status

from src.api.dependencies import AutomationDep
from src.api.schemas import SessionCreate, SessionSummary
from src.automation.session import ExecutionSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ExecutionSession, status_code=status.HTTP_202_ACCEPTED)
async def create_session(request: SessionCreate, automation: AutomationDep):
    """Start filling a list of URLs in the background."""
    session = ExecutionSession(
        id=str(uuid.uuid4()),
        profile_id=request.profile.id,
        profile_name=request.profile_name or request.profile.full_name,
        urls=request.urls,
        config=request.config,
    )
    task = asyncio.create_task(automation.engine.execute_session(session, request.profile))
    automation.sessions.add(session, task)
    logger.info(f"Session {session.id} started with {len(session.urls)} URLs")
    return session


@router.get("", response_model=list[SessionSummary])
async def list_sessions(automation: AutomationDep):
    """List sessions, most recent first."""
    return [
        SessionSummary(
            id=session.id,
            status=session.status.value,
            total_urls=len(session.urls),
            completed_urls=session.progress.completed_urls,
            failed_urls=session.progress.failed_urls,
            percentage=session.progress.percentage,
        )
        for session in automation.sessions.list()
    ]


@router.get("/{session_id}", response_model=ExecutionSession)
async def get_session(session_id: str, automation: AutomationDep):
    """Get a session with its results and errors."""
    session = automation.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


@router.post("/{session_id}/cancel", response_model=ExecutionSession)
async def cancel_session(session_id: str, automation: AutomationDep):
    """Cancel a running session."""
    return await automation.engine.cancel_job(session_id)


@router.post("/{session_id}/pause", response_model=ExecutionSession)
async def pause_session(session_id: str, automation: AutomationDep):
    """Pause a running session."""
    return await automation.engine.pause_job(session_id)


@router.post("/{session_id}/resume", response_model=ExecutionSession)
async def resume_session(session_id: str, automation: AutomationDep):
    """Resume a paused session."""
    return await automation.engine.resume_job(session_id)
