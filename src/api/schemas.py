"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, Field

from src.automation.models import ProfileData
from src.automation.session import SessionConfig


# ============================================================================
# Form Schemas
# ============================================================================


class AnalyzeRequest(BaseModel):
    """Request to detect forms on a page."""

    url: str


class FillRequest(BaseModel):
    """Request to fill the form on a page for a profile."""

    url: str
    profile: ProfileData


# ============================================================================
# Session Schemas
# ============================================================================


class SessionCreate(BaseModel):
    """Request to start a batch session."""

    profile: ProfileData
    urls: list[str] = Field(min_length=1)
    profile_name: str = ""
    config: SessionConfig = Field(default_factory=SessionConfig)


class SessionSummary(BaseModel):
    """Short view of a session for listings."""

    id: str
    status: str
    total_urls: int
    completed_urls: int
    failed_urls: int
    percentage: float


# ============================================================================
# Template Schemas
# ============================================================================


class TemplateSummary(BaseModel):
    """Template listing entry."""

    id: str
    domain: str
    form_type: str
    fields: int
    success_rate: float
    version: int
    last_updated: str


class CleanupResponse(BaseModel):
    """Result of a template cleanup."""

    removed: int
    max_age_days: int
