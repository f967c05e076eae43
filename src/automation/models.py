"""Shared models for the automation module."""

from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field


class FormType(str, Enum):
    """Purpose of a detected form."""

    REGISTRATION = "registration"
    LOGIN = "login"
    CONTACT = "contact"
    CHECKOUT = "checkout"
    PROFILE = "profile"
    SURVEY = "survey"
    UNKNOWN = "unknown"


# ============================================================================
# Detection Models
# ============================================================================


class DetectedField(BaseModel):
    """Form field found on a live page."""

    name: str = ""
    type: str = "text"  # text, email, tel, password, select, textarea, checkbox, radio, ...
    label: str = ""
    selector: str
    required: bool = False
    placeholder: str = ""
    validation_pattern: str = ""
    element_id: str = ""


class SubmitButton(BaseModel):
    """Submit control found inside a form."""

    text: str = ""
    selector: str
    type: str = "submit"


class DetectedForm(BaseModel):
    """Form found on a live page, classified and scored."""

    index: int = 0
    fields: list[DetectedField] = Field(default_factory=list)
    submit_buttons: list[SubmitButton] = Field(default_factory=list)
    form_type: FormType = FormType.UNKNOWN
    confidence: float = Field(default=0.0, ge=0, le=100)
    selector: str = ""
    action: str = ""
    method: str = "get"


class FormAnalysisResult(BaseModel):
    """Outcome of analyzing one page."""

    url: str
    forms: list[DetectedForm] = Field(default_factory=list)
    total_fields: int = 0
    confidence: float = 0.0
    analysis_time: float = 0.0  # seconds
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# Template Models
# ============================================================================


class FormField(BaseModel):
    """Field of a learned template."""

    id: str
    name: str = ""
    type: str = "text"
    selector: str
    label: str = ""
    required: bool = False
    validation_pattern: str = ""
    default_value: str = ""


class ValidationRule(BaseModel):
    """Client-side rule attached to a template field."""

    field: str
    type: str  # required, pattern, email
    pattern: str = ""
    message: str = ""


class FormTemplate(BaseModel):
    """Learned description of a form on a given URL."""

    id: str
    url: str
    domain: str
    form_type: FormType = FormType.UNKNOWN
    fields: list[FormField] = Field(default_factory=list)
    selectors: dict[str, str] = Field(default_factory=dict)
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    success_rate: float = Field(default=0.0, ge=0, le=100)
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    version: int = 1

    def selector_for(self, field: FormField) -> str:
        """Preferred selector for a field; the selectors map wins over the field's own."""
        key = field.name or field.id
        return self.selectors.get(key) or field.selector


def extract_domain(url: str) -> str:
    """Host part of a URL, lowercased."""
    return (urlparse(url).hostname or "").lower()


# ============================================================================
# Profile Models
# ============================================================================


class Address(BaseModel):
    """Postal address of a profile."""

    street: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class ProfileData(BaseModel):
    """Personal data used to fill forms. Read-only input."""

    id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: Address = Field(default_factory=Address)
    date_of_birth: str = ""  # YYYY-MM-DD
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def attribute(self, name: str) -> str:
        """Value of a named profile attribute, empty when missing."""
        if hasattr(self.address, name) and name in Address.model_fields:
            return getattr(self.address, name) or ""
        value = getattr(self, name, "")
        return value if isinstance(value, str) else ""


# ============================================================================
# Fill Results
# ============================================================================


class SubmissionResult(BaseModel):
    """Outcome of submitting a form and checking the page afterwards."""

    success: bool = False
    submission_time: float = 0.0  # seconds
    redirect_url: str = ""
    success_indicators: list[str] = Field(default_factory=list)
    error_messages: list[str] = Field(default_factory=list)


class FillResult(BaseModel):
    """Outcome of filling one form."""

    success: bool = False
    url: str = ""
    filled_fields: int = 0
    total_fields: int = 0
    success_rate: float = 0.0  # filled/total * 100
    execution_time: float = 0.0  # seconds
    errors: list[str] = Field(default_factory=list)
    skipped_fields: list[str] = Field(default_factory=list)
    screenshots: list[str] = Field(default_factory=list)
    submission: SubmissionResult | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ProfileFillResult(BaseModel):
    """Outcome of filling a form on behalf of a profile."""

    fill_result: FillResult
    profile_id: str = ""
    template_used: str = ""
    field_mappings: dict[str, str] = Field(default_factory=dict)
    unmapped_fields: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    submission_result: SubmissionResult | None = None
    confidence: float = 0.0
