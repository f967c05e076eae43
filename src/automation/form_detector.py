"""Form detection on live pages.

A single page script collects raw form data (fields, labels, submit
controls, visible text). Classification and confidence scoring run in
Python on that raw data, so they can be tested without a browser.
"""

import asyncio
import logging
import re
import time
import uuid
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from src.automation.exceptions import (
    InvalidURLError,
    NavigationError,
    SelectorNotFoundError,
)
from src.automation.models import (
    DetectedField,
    DetectedForm,
    FormAnalysisResult,
    FormField,
    FormTemplate,
    SubmitButton,
    ValidationRule,
    extract_domain,
)
from src.automation.selector_generator import ElementDescriptor, SelectorGenerator
from src.automation.strategies import FormClassifier, StrategyRegistry
from src.browser_service.adapters.base import PageDriver
from src.browser_service.pool import BrowserPool
from src.config import Settings

logger = logging.getLogger(__name__)

FORM_DETECTION_JS = """
() => {
    const FIELD_QUERY = 'input:not([type=hidden]):not([type=submit]):not([type=button])'
        + ':not([type=reset]):not([type=image]), select, textarea';
    const SUBMIT_QUERY = 'input[type=submit], input[type=image], button[type=submit], '
        + 'button:not([type]), [role=button][type=submit]';

    function stableClasses(el) {
        return Array.from(el.classList).filter(
            c => !c.startsWith('ng-') && !c.startsWith('v-') && c.length < 20
        );
    }

    function selectorFor(el) {
        if (el.id) return '#' + CSS.escape(el.id);
        const name = el.getAttribute('name');
        if (name) return `${el.tagName.toLowerCase()}[name="${name.replace(/"/g, '\\\\"')}"]`;
        const parts = [];
        let node = el;
        while (node && node.nodeType === Node.ELEMENT_NODE && node !== document.body) {
            let part = node.tagName.toLowerCase();
            if (node.id) {
                parts.unshift('#' + CSS.escape(node.id));
                break;
            }
            const classes = stableClasses(node);
            if (classes.length) part += '.' + classes.map(c => CSS.escape(c)).join('.');
            const parent = node.parentElement;
            if (parent) {
                const sameTag = Array.from(parent.children).filter(c => c.tagName === node.tagName);
                if (sameTag.length > 1) {
                    part += `:nth-child(${Array.from(parent.children).indexOf(node) + 1})`;
                }
            }
            parts.unshift(part);
            node = parent;
        }
        return parts.join(' > ');
    }

    function labelFor(el) {
        if (el.id) {
            const explicit = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
            if (explicit && explicit.innerText.trim()) return explicit.innerText.trim();
        }
        const wrapping = el.closest('label');
        if (wrapping && wrapping.innerText.trim()) return wrapping.innerText.trim();
        const aria = el.getAttribute('aria-label');
        if (aria) return aria.trim();
        if (el.placeholder) return el.placeholder.trim();
        const previous = el.previousElementSibling;
        if (previous && previous.innerText && previous.innerText.trim().length < 100) {
            return previous.innerText.trim();
        }
        const parent = el.parentElement;
        if (parent && parent.innerText && parent.innerText.trim().length < 100) {
            return parent.innerText.trim();
        }
        return '';
    }

    return Array.from(document.querySelectorAll('form')).map((form, index) => {
        const fields = Array.from(form.querySelectorAll(FIELD_QUERY)).map(el => ({
            name: el.getAttribute('name') || '',
            element_id: el.id || '',
            type: el.tagName === 'INPUT' ? (el.getAttribute('type') || 'text').toLowerCase()
                : el.tagName.toLowerCase(),
            label: labelFor(el),
            selector: selectorFor(el),
            required: el.required || el.getAttribute('aria-required') === 'true',
            placeholder: el.placeholder || '',
            validation_pattern: el.getAttribute('pattern') || '',
        }));
        const submit_buttons = Array.from(form.querySelectorAll(SUBMIT_QUERY)).map(el => ({
            text: (el.innerText || el.value || '').trim(),
            selector: selectorFor(el),
            type: (el.getAttribute('type') || 'submit').toLowerCase(),
        }));
        return {
            index: index,
            selector: selectorFor(form),
            action: form.getAttribute('action') || '',
            method: (form.getAttribute('method') || 'get').toLowerCase(),
            text: (form.innerText || '').slice(0, 2000),
            fields: fields,
            submit_buttons: submit_buttons,
        };
    });
}
"""


class DetectorConfig(BaseModel):
    """Form detection settings. Confidence values are on the 0-100 scale."""

    wait_until: str = "networkidle"
    wait_timeout_ms: int = Field(default=10000, ge=1000)
    analysis_timeout: float = Field(default=30.0, gt=0)  # seconds, whole analysis
    settle_delay: float = Field(default=2.0, ge=0)  # seconds after load
    max_forms: int = Field(default=10, ge=1)
    min_confidence: float = Field(default=50.0, ge=0, le=100)
    classifier: str = "keyword"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DetectorConfig":
        return cls(
            wait_timeout_ms=settings.detector_wait_timeout_ms,
            analysis_timeout=settings.browser_timeout_ms / 1000,
            settle_delay=settings.detector_settle_delay,
            max_forms=settings.detector_max_forms,
            min_confidence=settings.detector_min_confidence,
        )


def calculate_form_confidence(fields: list[DetectedField], has_submit: bool) -> float:
    """Score how likely a form is a real, fillable form.

    Up to 50 points for field count (10 per field), 20 for the share of
    labelled fields, 15 for the share of named fields and 15 for having
    a submit control. Capped at 100.
    """
    score = min(len(fields) * 10.0, 50.0)
    if fields:
        labelled = sum(1 for field in fields if field.label)
        named = sum(1 for field in fields if field.name)
        score += labelled / len(fields) * 20.0
        score += named / len(fields) * 15.0
    if has_submit:
        score += 15.0
    return min(score, 100.0)


def validate_url(url: str) -> str:
    """Return the host of an http(s) URL.

    Raises:
        InvalidURLError: If the URL has no http(s) scheme or no host
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidURLError(f"Invalid URL: {url!r}")
    return parsed.hostname.lower()


def _slug(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]+", "_", value).strip("_").lower()


class FormDetector:
    """Finds, classifies and scores forms, and turns them into templates."""

    def __init__(
        self,
        pool: BrowserPool,
        config: DetectorConfig | None = None,
        classifier: FormClassifier | None = None,
        selector_generator: SelectorGenerator | None = None,
    ) -> None:
        self.pool = pool
        self.config = config or DetectorConfig()
        self.classifier = classifier or StrategyRegistry.get_classifier(self.config.classifier)
        self.selector_generator = selector_generator or SelectorGenerator()

    async def analyze_page(self, url: str) -> FormAnalysisResult:
        """Load a page in a pooled context and detect its forms.

        Raises:
            InvalidURLError: If the URL is malformed
            NavigationError: If the page does not load within the analysis timeout
        """
        validate_url(url)
        logger.info(f"Analyzing forms on {url}")
        try:
            return await asyncio.wait_for(self._analyze(url), timeout=self.config.analysis_timeout)
        except asyncio.TimeoutError as e:
            raise NavigationError(
                url, f"analysis timeout after {self.config.analysis_timeout:.0f}s"
            ) from e

    async def _analyze(self, url: str) -> FormAnalysisResult:
        start = time.time()
        async with self.pool.page() as page:
            await page.navigate(url, wait_until=self.config.wait_until)
            if self.config.settle_delay:
                await asyncio.sleep(self.config.settle_delay)
            result = await self.detect_forms(page, url)
        result.analysis_time = time.time() - start
        logger.info(
            f"Found {len(result.forms)} forms ({result.total_fields} fields) on {url} "
            f"in {result.analysis_time:.2f}s"
        )
        return result

    async def detect_forms(self, page: PageDriver, url: str) -> FormAnalysisResult:
        """Detect forms on an already loaded page.

        Forms below ``min_confidence`` are dropped; the rest are sorted by
        confidence and capped at ``max_forms``.
        """
        raw_forms = await page.evaluate(FORM_DETECTION_JS)
        forms = self.parse_detected_forms(raw_forms or [])

        kept = [form for form in forms if form.confidence >= self.config.min_confidence]
        kept.sort(key=lambda form: form.confidence, reverse=True)
        kept = kept[: self.config.max_forms]

        total_fields = sum(len(form.fields) for form in kept)
        confidence = sum(form.confidence for form in kept) / len(kept) if kept else 0.0

        return FormAnalysisResult(
            url=url,
            forms=kept,
            total_fields=total_fields,
            confidence=confidence,
        )

    def parse_detected_forms(self, raw_forms: list[dict[str, Any]]) -> list[DetectedForm]:
        """Turn raw page-script output into classified, scored forms."""
        forms: list[DetectedForm] = []
        for position, raw in enumerate(raw_forms):
            fields = [
                DetectedField.model_validate(raw_field)
                for raw_field in raw.get("fields", [])
                if raw_field.get("name") or raw_field.get("label")
            ]
            buttons = [SubmitButton.model_validate(b) for b in raw.get("submit_buttons", [])]
            form_text = " ".join([raw.get("text", "")] + [field.label for field in fields])

            forms.append(
                DetectedForm(
                    index=raw.get("index", position),
                    fields=fields,
                    submit_buttons=buttons,
                    form_type=self.classifier.classify(fields, form_text),
                    confidence=calculate_form_confidence(fields, bool(buttons)),
                    selector=raw.get("selector", ""),
                    action=raw.get("action", ""),
                    method=raw.get("method", "get"),
                )
            )
        return forms

    def generate_form_template(self, form: DetectedForm, url: str) -> FormTemplate:
        """Build a version-1 template from a detected form.

        Raises:
            InvalidURLError: If the URL is malformed
        """
        host = validate_url(url)
        template_id = f"template_{host.replace('.', '_')}_{form.form_type.value}_{uuid.uuid4().hex[:8]}"

        fields: list[FormField] = []
        selectors: dict[str, str] = {}
        rules: list[ValidationRule] = []

        for index, detected in enumerate(form.fields):
            field = FormField(
                id=f"field_{index}_{_slug(detected.name or detected.label) or 'unnamed'}",
                name=detected.name,
                type=detected.type,
                selector=detected.selector,
                label=detected.label,
                required=detected.required,
                validation_pattern=detected.validation_pattern,
                default_value=detected.placeholder,
            )
            key = field.name or field.id
            fields.append(field)
            selectors[key] = field.selector

            display = field.label or field.name
            if field.required:
                rules.append(
                    ValidationRule(field=key, type="required", message=f"{display} is required")
                )
            if field.type == "email":
                rules.append(
                    ValidationRule(field=key, type="email", message=f"{display} must be an email")
                )
            if field.validation_pattern:
                rules.append(
                    ValidationRule(
                        field=key,
                        type="pattern",
                        pattern=field.validation_pattern,
                        message=f"{display} has an invalid format",
                    )
                )

        return FormTemplate(
            id=template_id,
            url=url,
            domain=extract_domain(url),
            form_type=form.form_type,
            fields=fields,
            selectors=selectors,
            validation_rules=rules,
            success_rate=0.0,
            version=1,
        )

    async def optimize_template(self, template: FormTemplate) -> FormTemplate:
        """Re-check a template's selectors on the live page and repair stale ones.

        Returns:
            A copy with repaired selectors and the version bumped
        """
        optimized = template.model_copy(deep=True)
        repaired = 0

        async with self.pool.page() as page:
            await page.navigate(template.url, wait_until=self.config.wait_until)
            if self.config.settle_delay:
                await asyncio.sleep(self.config.settle_delay)

            for field in optimized.fields:
                current = optimized.selector_for(field)
                validation = await self.selector_generator.validate_selector(page, current)
                if validation.unique:
                    continue

                try:
                    if validation.valid:
                        element = await self.selector_generator.describe_element(page, current)
                    else:
                        element = ElementDescriptor(name=field.name)
                    best = await self.selector_generator.find_best_selector(page, element)
                except SelectorNotFoundError:
                    logger.warning(f"No replacement selector for field {field.name or field.id}")
                    continue

                if best.selector != current:
                    field.selector = best.selector
                    optimized.selectors[field.name or field.id] = best.selector
                    repaired += 1

        optimized.version += 1
        optimized.last_updated = datetime.utcnow()
        logger.info(f"Optimized template {template.id}: {repaired} selectors repaired")
        return optimized
