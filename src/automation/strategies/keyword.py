"""Keyword-based form classification."""

from src.automation.models import DetectedField, FormType
from src.automation.strategies.base import FormClassifier
from src.automation.strategies.registry import StrategyRegistry


@StrategyRegistry.register_classifier
class KeywordFormClassifier(FormClassifier):
    """Classify forms from visible text and field names.

    Rules run in a fixed order; the first match wins. Registration is
    checked before login because sign-up forms also carry an email and
    a password.
    """

    TEXT_KEYWORDS: dict[FormType, list[str]] = {
        FormType.REGISTRATION: ["register", "sign up", "signup", "create account", "create an account"],
        FormType.LOGIN: ["login", "log in", "sign in", "signin"],
        FormType.CONTACT: ["contact", "message", "get in touch"],
        FormType.CHECKOUT: ["checkout", "payment", "place order", "billing"],
        FormType.PROFILE: ["profile", "account settings", "personal details", "update your"],
        FormType.SURVEY: ["survey", "questionnaire", "feedback", "rate your"],
    }

    FIELD_KEYWORDS: dict[FormType, list[str]] = {
        FormType.CONTACT: ["message", "subject", "comment", "inquiry"],
        FormType.CHECKOUT: ["card", "billing", "cvv", "cvc", "expiry"],
        FormType.PROFILE: ["bio", "avatar", "display_name", "displayname"],
    }

    @property
    def name(self) -> str:
        return "keyword"

    def classify(self, fields: list[DetectedField], form_text: str) -> FormType:
        text = form_text.lower()
        names = [f"{field.name} {field.element_id}".lower() for field in fields]

        password_fields = [field for field in fields if field.type == "password"]
        has_confirm = any(
            "confirm" in name and ("password" in name or "pass" in name) for name in names
        )
        has_identity = any(
            field.type == "email" or any(key in name for key in ("email", "user", "login"))
            for field, name in zip(fields, names)
        )

        if self._text_has(text, FormType.REGISTRATION) or len(password_fields) >= 2 or has_confirm:
            return FormType.REGISTRATION
        if self._text_has(text, FormType.LOGIN) or (password_fields and has_identity):
            return FormType.LOGIN

        for form_type in (FormType.CONTACT, FormType.CHECKOUT, FormType.PROFILE):
            if self._text_has(text, form_type) or self._names_have(names, form_type):
                return form_type

        choice_fields = [field for field in fields if field.type in ("radio", "checkbox")]
        if self._text_has(text, FormType.SURVEY) or len(choice_fields) >= 3:
            return FormType.SURVEY

        return FormType.UNKNOWN

    def _text_has(self, text: str, form_type: FormType) -> bool:
        return any(keyword in text for keyword in self.TEXT_KEYWORDS[form_type])

    def _names_have(self, names: list[str], form_type: FormType) -> bool:
        keywords = self.FIELD_KEYWORDS.get(form_type, [])
        return any(keyword in name for name in names for keyword in keywords)
