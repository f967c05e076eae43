"""Form automation module.

This module provides:
- FormDetector: finds and classifies forms, generates templates
- FieldMapper: maps profile data onto form fields
- FormFiller / ProfileFormFiller: fill and submit forms from templates
- TemplateRepository: persisted templates with success tracking
- ExecutionEngine: resource-aware concurrent sessions

Engine components are imported from their modules; the package root only
exposes errors, models and the strategy registry.
"""

from src.automation.exceptions import (
    AutofillError,
    NavigationError,
    PoolFailureError,
    SelectorNotFoundError,
    is_transient_error,
)
from src.automation.models import (
    DetectedField,
    DetectedForm,
    FormField,
    FormTemplate,
    FormType,
    ProfileData,
)

# Import strategies to register them
from src.automation.strategies import (  # noqa: F401
    FieldMatcher,
    FormClassifier,
    StrategyRegistry,
)

__all__ = [
    # Errors
    "AutofillError",
    "NavigationError",
    "PoolFailureError",
    "SelectorNotFoundError",
    "is_transient_error",
    # Models
    "DetectedField",
    "DetectedForm",
    "FormField",
    "FormTemplate",
    "FormType",
    "ProfileData",
    # Strategies
    "FieldMatcher",
    "FormClassifier",
    "StrategyRegistry",
]
