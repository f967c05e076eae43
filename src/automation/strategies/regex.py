"""Regex-based field matching against profile attributes."""

import re

from src.automation.models import FormField, ProfileData
from src.automation.strategies.base import FieldMatcher
from src.automation.strategies.registry import StrategyRegistry

# Profile attribute -> patterns over "<name> <label>". Order is precedence.
FIELD_PATTERNS: dict[str, list[str]] = {
    "first_name": [r"first.*name", r"fname", r"given.*name", r"forename", r"prenom", r"nombre"],
    "last_name": [r"last.*name", r"lname", r"surname", r"family.*name", r"apellido", r"nom"],
    "email": [r"email", r"e.mail", r"mail", r"correo", r"courriel"],
    "phone": [r"phone", r"tel", r"mobile", r"cell", r"telefono", r"telephone", r"numero"],
    "street2": [r"address.?2", r"line.?2", r"apartment", r"suite"],
    "street": [r"address", r"street", r"addr", r"direccion", r"adresse", r"rue"],
    "city": [r"city", r"town", r"ciudad", r"ville", r"locality"],
    "state": [r"state", r"province", r"region", r"estado", r"provincia", r"departement"],
    "postal_code": [r"zip", r"postal", r"postcode", r"codigo.*postal", r"code.*postal"],
    "country": [r"country", r"nation", r"pais", r"pays", r"nationality"],
}

TYPE_SHORTCUTS: dict[str, str] = {
    "email": "email",
    "tel": "phone",
}

FULL_NAME_PATTERN = re.compile(r"full.?name", re.IGNORECASE)
BIRTH_DATE_PATTERN = re.compile(r"birth|dob", re.IGNORECASE)


@StrategyRegistry.register_matcher
class RegexFieldMatcher(FieldMatcher):
    """Map fields to profile attributes with a multi-language pattern bank.

    Precedence:
    1. Input type shortcuts (email, tel)
    2. Pattern bank over the field name and label
    3. Composite fields (full name, date of birth)
    4. Custom profile attributes whose key appears in the name or label
    """

    def __init__(self, patterns: dict[str, list[str]] | None = None) -> None:
        self._patterns = {
            attribute: [re.compile(pattern, re.IGNORECASE) for pattern in attribute_patterns]
            for attribute, attribute_patterns in (patterns or FIELD_PATTERNS).items()
        }

    @property
    def name(self) -> str:
        return "regex"

    def match(self, field: FormField, profile: ProfileData) -> str:
        shortcut = TYPE_SHORTCUTS.get(field.type.lower())
        if shortcut:
            value = profile.attribute(shortcut)
            if value:
                return value

        text = f"{field.name} {field.label}"
        for attribute, patterns in self._patterns.items():
            value = profile.attribute(attribute)
            if not value:
                continue
            if any(pattern.search(text) for pattern in patterns):
                return value

        value = self._match_composite(field, profile)
        if value:
            return value

        return self._match_custom(field, profile)

    def _match_composite(self, field: FormField, profile: ProfileData) -> str:
        name = field.name.lower().strip()
        label = field.label.lower().strip()

        if FULL_NAME_PATTERN.search(name) or "full name" in label or "name" in (name, label):
            return profile.full_name

        if profile.date_of_birth and (
            BIRTH_DATE_PATTERN.search(name) or BIRTH_DATE_PATTERN.search(label)
        ):
            return profile.date_of_birth

        return ""

    def _match_custom(self, field: FormField, profile: ProfileData) -> str:
        name = field.name.lower()
        label = field.label.lower()
        for key, value in profile.custom_fields.items():
            key_lower = key.lower()
            if value is None or not key_lower:
                continue
            if key_lower in name or key_lower in label:
                return str(value)
        return ""
