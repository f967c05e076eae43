"""System resource routes."""

from fastapi import APIRouter

from src.api.dependencies import AutomationDep
from src.automation.resource_monitor import ResourceSnapshot

router = APIRouter()


@router.get("/resources", response_model=ResourceSnapshot)
async def current_resources(automation: AutomationDep):
    """Latest resource snapshot."""
    return automation.engine.monitor.get_current_resources()


@router.get("/status")
async def engine_status(automation: AutomationDep):
    """Concurrency, health and pool occupancy."""
    engine = automation.engine
    active = await engine.get_active_jobs()
    return {
        "concurrency": engine.current_concurrency,
        "healthy": engine.monitor.is_system_healthy(),
        "active_jobs": [session.id for session in active],
        "recommendations": [
            r.model_dump() for r in engine.monitor.get_recommendations(engine.current_concurrency)
        ],
        "pool": automation.pool.status().model_dump(mode="json") if automation.pool else None,
    }
