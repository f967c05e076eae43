"""Form analysis and single-page filling routes."""

import logging

from fastapi import APIRouter

from src.api.dependencies import AutomationDep
from src.api.schemas import AnalyzeRequest, FillRequest
from src.automation.models import FormAnalysisResult, ProfileFillResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/analyze", response_model=FormAnalysisResult)
async def analyze_page(request: AnalyzeRequest, automation: AutomationDep):
    """Detect and classify the forms on a page."""
    return await automation.engine.analyze_page(request.url)


@router.post("/fill", response_model=ProfileFillResult)
async def fill_form(request: FillRequest, automation: AutomationDep):
    """Fill the form on a page with a profile's data."""
    logger.info(f"Fill request for {request.url} (profile={request.profile.id})")
    return await automation.engine.fill_form_with_profile(request.url, request.profile)
