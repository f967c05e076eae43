"""Map profile data onto template fields."""

import logging
import re

from src.automation.exceptions import ValidationWarning
from src.automation.models import FormField, ProfileData
from src.automation.strategies import FieldMatcher, StrategyRegistry

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-\(\)\+]+$")


class FieldMapper:
    """Infers which profile value goes into which field.

    Matching is delegated to a FieldMatcher so the pattern bank can be
    swapped without touching filling or scheduling.
    """

    def __init__(self, matcher: FieldMatcher | None = None, use_ai_mapping: bool = False) -> None:
        self.matcher = matcher or StrategyRegistry.get_matcher("regex")
        # Accepted for configuration compatibility; inference stays rule-based
        self.use_ai_mapping = use_ai_mapping

    def map_profile_to_fields(
        self, profile: ProfileData, fields: list[FormField]
    ) -> dict[str, str]:
        """Build the field name -> value mapping for a profile.

        Args:
            profile: Profile supplying the values
            fields: Template fields to fill

        Returns:
            Mapping keyed by field name (field id when the name is empty);
            fields without a value are left out
        """
        mapping: dict[str, str] = {}
        for field in fields:
            value = self.matcher.match(field, profile)
            if value:
                mapping[field_key(field)] = value

        logger.debug(f"Mapped {len(mapping)}/{len(fields)} fields for profile {profile.id}")
        return mapping

    def unmapped_fields(self, mapping: dict[str, str], fields: list[FormField]) -> list[str]:
        """Keys of fields that received no value."""
        return [field_key(field) for field in fields if field_key(field) not in mapping]

    def validate_field_mapping(
        self, mapping: dict[str, str], fields: list[FormField]
    ) -> list[ValidationWarning]:
        """Check mapped values against field constraints.

        Returns:
            Warnings; an empty list means the mapping looks fillable
        """
        warnings: list[ValidationWarning] = []
        for field in fields:
            key = field_key(field)
            if key not in mapping:
                if field.required:
                    warnings.append(ValidationWarning(f"Required field {key} is not mapped"))
                continue

            value = mapping[key]
            if field.required and not value.strip():
                warnings.append(ValidationWarning(f"Required field {key} is empty"))
                continue

            if field.type == "email" and value and not EMAIL_PATTERN.match(value):
                warnings.append(ValidationWarning(f"Invalid email format for field {key}: {value}"))
            elif field.type == "tel" and value and not PHONE_PATTERN.match(value):
                warnings.append(ValidationWarning(f"Invalid phone format for field {key}: {value}"))

            if field.validation_pattern and value:
                try:
                    if not re.fullmatch(field.validation_pattern, value):
                        warnings.append(
                            ValidationWarning(f"Value for field {key} does not match its pattern")
                        )
                except re.error:
                    # HTML pattern attributes are not always valid Python regexes
                    logger.debug(f"Skipping unparseable pattern on field {key}")

        return warnings


def field_key(field: FormField) -> str:
    """Key a field is addressed by in a mapping."""
    return field.name or field.id


def calculate_mapping_confidence(mapping: dict[str, str], fields: list[FormField]) -> float:
    """Percentage of fields that received a value.

    Returns:
        100 when every field is mapped, 0 for an empty field list
    """
    if not fields:
        return 0.0
    mapped = sum(1 for field in fields if mapping.get(field_key(field)))
    return mapped / len(fields) * 100
