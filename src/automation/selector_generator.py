"""Selector generation and validation.

Candidates come from a fixed set of strategies ordered by priority
(id first, positional CSS path last). Each candidate is scored on a
live page by how many elements it matches: exactly one is a perfect
selector, several dilute the score, none is invalid.
"""

import json
import logging
import re
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from src.automation.exceptions import SelectorNotFoundError
from src.browser_service.adapters.base import RESOLVE_ELEMENTS_JS, PageDriver

logger = logging.getLogger(__name__)

DATA_ATTRIBUTES = ["data-name", "data-field", "data-testid", "data-cy", "data-test"]

# Framework-generated class prefixes that change between builds
UNSTABLE_CLASS_PREFIXES = ("ng-", "v-", "react-", "vue-", "css-", "sc-", "emotion-", "Mui", "ant-")
MAX_CLASS_LENGTH = 20
# Trailing segment of 5+ chars where a digit is followed by letters, e.g. "a1b2c3"
HASHED_CLASS_PATTERN = re.compile(r"(?:^|[-_])(?=[a-z0-9]{5,}$)[a-z]*\d+[a-z]+[a-z0-9]*$", re.IGNORECASE)
SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

DESCRIBE_ELEMENT_JS = (
    "(selector) => {"
    + RESOLVE_ELEMENTS_JS
    + """
    const el = resolveElements(selector)[0];
    if (!el) return null;

    const dataAttributes = {};
    for (const attr of el.attributes) {
        if (attr.name.startsWith('data-')) dataAttributes[attr.name] = attr.value;
    }

    function xpathOf(node) {
        if (node.id) return `//*[@id="${node.id}"]`;
        const parts = [];
        while (node && node.nodeType === Node.ELEMENT_NODE) {
            let index = 1;
            let sibling = node.previousElementSibling;
            while (sibling) {
                if (sibling.tagName === node.tagName) index++;
                sibling = sibling.previousElementSibling;
            }
            parts.unshift(`${node.tagName.toLowerCase()}[${index}]`);
            node = node.parentElement;
        }
        return '/' + parts.join('/');
    }

    function cssPathOf(node) {
        const parts = [];
        while (node && node.nodeType === Node.ELEMENT_NODE && node !== document.body) {
            let part = node.tagName.toLowerCase();
            if (node.id) {
                parts.unshift(`#${CSS.escape(node.id)}`);
                break;
            }
            const classes = Array.from(node.classList);
            if (classes.length > 0 && classes.length < 4) {
                part += '.' + classes.map(c => CSS.escape(c)).join('.');
            }
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

    return {
        tag: el.tagName.toLowerCase(),
        id: el.id || '',
        name: el.getAttribute('name') || '',
        classes: Array.from(el.classList),
        data_attributes: dataAttributes,
        xpath: xpathOf(el),
        css_path: cssPathOf(el),
    };
}"""
)


class ElementDescriptor(BaseModel):
    """Attributes of one element that selectors can be built from."""

    tag: str = ""
    id: str = ""
    name: str = ""
    classes: list[str] = Field(default_factory=list)
    data_attributes: dict[str, str] = Field(default_factory=dict)
    xpath: str = ""
    css_path: str = ""


class SelectorCandidate(BaseModel):
    """Selector produced by a strategy."""

    selector: str
    strategy: str
    priority: int
    confidence: float = 0.0


class SelectorValidation(BaseModel):
    """Result of testing a selector on a live page."""

    selector: str
    valid: bool
    unique: bool
    match_count: int
    confidence: float  # 100 unique, 50/n for n matches, 0 when none


def quote_attribute(value: str) -> str:
    """Quote a value for a CSS attribute selector."""
    return json.dumps(value)


# ============================================================================
# Strategies
# ============================================================================


class SelectorStrategy(ABC):
    """Builds selectors for an element from one kind of attribute."""

    name: str = ""
    priority: int = 0

    @abstractmethod
    def generate(self, element: ElementDescriptor) -> list[str]:
        """Return zero or more selectors for the element."""
        ...


class IdStrategy(SelectorStrategy):
    name = "id"
    priority = 100

    def generate(self, element: ElementDescriptor) -> list[str]:
        if not element.id:
            return []
        if SIMPLE_IDENTIFIER.match(element.id):
            return [f"#{element.id}"]
        return [f"[id={quote_attribute(element.id)}]"]


class NameStrategy(SelectorStrategy):
    name = "name"
    priority = 90

    def generate(self, element: ElementDescriptor) -> list[str]:
        if not element.name:
            return []
        return [f"[name={quote_attribute(element.name)}]"]


class DataAttributeStrategy(SelectorStrategy):
    name = "data_attribute"
    priority = 80

    def generate(self, element: ElementDescriptor) -> list[str]:
        return [
            f"[{attribute}={quote_attribute(element.data_attributes[attribute])}]"
            for attribute in DATA_ATTRIBUTES
            if element.data_attributes.get(attribute)
        ]


class ClassStrategy(SelectorStrategy):
    name = "class"
    priority = 70

    def generate(self, element: ElementDescriptor) -> list[str]:
        stable = [cls for cls in element.classes if is_stable_class(cls)]
        if not stable:
            return []
        return [f"{element.tag or ''}." + ".".join(stable)]


class XPathStrategy(SelectorStrategy):
    name = "xpath"
    priority = 60

    def generate(self, element: ElementDescriptor) -> list[str]:
        return [element.xpath] if element.xpath else []


class CssPathStrategy(SelectorStrategy):
    name = "css_path"
    priority = 50

    def generate(self, element: ElementDescriptor) -> list[str]:
        return [element.css_path] if element.css_path else []


DEFAULT_STRATEGIES: list[SelectorStrategy] = [
    IdStrategy(),
    NameStrategy(),
    DataAttributeStrategy(),
    ClassStrategy(),
    XPathStrategy(),
    CssPathStrategy(),
]


def is_stable_class(class_name: str) -> bool:
    """Reject framework-generated, hashed and overly long class tokens."""
    if not class_name or len(class_name) > MAX_CLASS_LENGTH:
        return False
    if class_name.startswith(UNSTABLE_CLASS_PREFIXES):
        return False
    if HASHED_CLASS_PATTERN.search(class_name):
        return False
    return True


# ============================================================================
# Generator
# ============================================================================


class SelectorGenerator:
    """Produces, scores and ranks selectors for page elements."""

    def __init__(self, strategies: list[SelectorStrategy] | None = None) -> None:
        self.strategies = sorted(
            strategies or DEFAULT_STRATEGIES, key=lambda strategy: strategy.priority, reverse=True
        )

    def generate_selectors(self, element: ElementDescriptor) -> list[SelectorCandidate]:
        """All candidate selectors in strategy priority order, without duplicates."""
        candidates: list[SelectorCandidate] = []
        seen: set[str] = set()
        for strategy in self.strategies:
            for selector in strategy.generate(element):
                if selector in seen:
                    continue
                seen.add(selector)
                candidates.append(
                    SelectorCandidate(
                        selector=selector, strategy=strategy.name, priority=strategy.priority
                    )
                )
        return candidates

    async def describe_element(self, page: PageDriver, selector: str) -> ElementDescriptor:
        """Read selector-relevant attributes of the first matching element.

        Raises:
            SelectorNotFoundError: If nothing matches
        """
        data = await page.evaluate(DESCRIBE_ELEMENT_JS, selector)
        if not data:
            raise SelectorNotFoundError(selector)
        return ElementDescriptor.model_validate(data)

    async def validate_selector(self, page: PageDriver, selector: str) -> SelectorValidation:
        """Count matches of a selector on the page and score it."""
        count = await page.count(selector)
        if count == 1:
            confidence = 100.0
        elif count > 1:
            confidence = 50.0 / count
        else:
            confidence = 0.0

        return SelectorValidation(
            selector=selector,
            valid=count > 0,
            unique=count == 1,
            match_count=count,
            confidence=confidence,
        )

    async def optimize_selectors(
        self, page: PageDriver, candidates: list[SelectorCandidate]
    ) -> list[SelectorCandidate]:
        """Validate candidates and return the valid ones, best first.

        Equal confidence keeps strategy priority order.
        """
        scored: list[SelectorCandidate] = []
        for candidate in candidates:
            validation = await self.validate_selector(page, candidate.selector)
            if validation.valid:
                scored.append(candidate.model_copy(update={"confidence": validation.confidence}))
        return sorted(scored, key=lambda c: (c.confidence, c.priority), reverse=True)

    async def find_best_selector(
        self, page: PageDriver, element: ElementDescriptor
    ) -> SelectorCandidate:
        """Highest-confidence valid selector for an element.

        Raises:
            SelectorNotFoundError: If no candidate matches anything
        """
        ranked = await self.optimize_selectors(page, self.generate_selectors(element))
        if not ranked:
            raise SelectorNotFoundError(element.css_path or element.xpath, "no valid selector")
        best = ranked[0]
        logger.debug(f"Best selector {best.selector} ({best.strategy}, {best.confidence:.0f})")
        return best

    async def generate_alternative_selectors(self, page: PageDriver, selector: str) -> list[str]:
        """Other selectors for the element a selector currently points at."""
        element = await self.describe_element(page, selector)
        return [c.selector for c in self.generate_selectors(element) if c.selector != selector]

    async def test_selector_stability(
        self, page: PageDriver, selector: str, iterations: int = 3
    ) -> float:
        """Fraction of page reloads after which the selector is still unique.

        Returns:
            Value in [0, 1]; 0 when ``iterations`` is not positive
        """
        if iterations <= 0:
            return 0.0

        stable = 0
        for _ in range(iterations):
            await page.reload()
            validation = await self.validate_selector(page, selector)
            if validation.unique:
                stable += 1
        return stable / iterations
