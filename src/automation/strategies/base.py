"""Base interfaces for form classification and field matching."""

from abc import ABC, abstractmethod

from src.automation.models import DetectedField, FormField, FormType, ProfileData


class FormClassifier(ABC):
    """Decides what a detected form is for.

    Implementations look at the form's fields and visible text and
    return a FormType. Swapping the classifier does not affect detection
    scoring or scheduling.

    Usage:
        classifier = KeywordFormClassifier()
        form_type = classifier.classify(fields, "Create your account")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Classifier identifier (e.g., 'keyword')."""
        ...

    @abstractmethod
    def classify(self, fields: list[DetectedField], form_text: str) -> FormType:
        """Classify a form.

        Args:
            fields: Fields detected inside the form
            form_text: Visible text of the form element

        Returns:
            The inferred FormType, UNKNOWN when nothing matches
        """
        ...


class FieldMatcher(ABC):
    """Picks the profile value for one template field.

    Usage:
        matcher = RegexFieldMatcher()
        value = matcher.match(field, profile)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Matcher identifier (e.g., 'regex')."""
        ...

    @abstractmethod
    def match(self, field: FormField, profile: ProfileData) -> str:
        """Find the value to put in a field.

        Args:
            field: Template field with name, label and type
            profile: Profile being used to fill the form

        Returns:
            The value, or an empty string when the field is unmapped
        """
        ...
