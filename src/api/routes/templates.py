"""Template management routes."""

from datetime import timedelta

from fastapi import APIRouter, Query

from src.api.dependencies import AutomationDep
from src.api.schemas import CleanupResponse, TemplateSummary
from src.automation.models import FormTemplate
from src.automation.template_repository import TemplateMetrics, template_summary

router = APIRouter()


@router.get("", response_model=list[TemplateSummary])
async def list_templates(
    automation: AutomationDep,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """List templates, most recently updated first."""
    templates = await automation.repository.list_templates(limit=limit, offset=offset)
    return [template_summary(template) for template in templates]


@router.get("/metrics", response_model=TemplateMetrics)
async def template_metrics(automation: AutomationDep):
    """Aggregate statistics over stored templates."""
    return await automation.repository.get_metrics()


@router.get("/{template_id}", response_model=FormTemplate)
async def get_template(template_id: str, automation: AutomationDep):
    return await automation.repository.get(template_id)


@router.delete("/{template_id}", status_code=204)
async def delete_template(template_id: str, automation: AutomationDep):
    await automation.repository.delete(template_id)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_templates(
    automation: AutomationDep,
    max_age_days: int = Query(default=30, ge=1),
):
    """Delete templates not updated within the given number of days."""
    removed = await automation.repository.cleanup_old_templates(timedelta(days=max_age_days))
    return CleanupResponse(removed=removed, max_age_days=max_age_days)
