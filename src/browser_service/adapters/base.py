"""Base page driver protocol."""

from abc import ABC, abstractmethod
from typing import Any

from src.browser_service.models import NavigateResponse

# Resolves a CSS or XPath selector to a list of elements. Invalid syntax yields [].
RESOLVE_ELEMENTS_JS = """
function resolveElements(selector) {
    try {
        if (selector.startsWith('xpath=') || selector.startsWith('//') || selector.startsWith('(//')) {
            const expr = selector.startsWith('xpath=') ? selector.slice(6) : selector;
            const snapshot = document.evaluate(
                expr, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null
            );
            const nodes = [];
            for (let i = 0; i < snapshot.snapshotLength; i++) {
                nodes.push(snapshot.snapshotItem(i));
            }
            return nodes;
        }
        return Array.from(document.querySelectorAll(selector));
    } catch (e) {
        return [];
    }
}
"""

COUNT_ELEMENTS_JS = (
    "(selector) => {" + RESOLVE_ELEMENTS_JS + " return resolveElements(selector).length; }"
)

ELEMENT_TEXTS_JS = (
    "(selector) => {"
    + RESOLVE_ELEMENTS_JS
    + """
    return resolveElements(selector)
        .map(el => (el.innerText || el.value || el.textContent || '').trim())
        .filter(text => text.length > 0);
}"""
)

DISPATCH_EVENTS_JS = (
    "(selector) => {"
    + RESOLVE_ELEMENTS_JS
    + """
    const el = resolveElements(selector)[0];
    if (!el) return false;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""
)


class PageDriver(ABC):
    """Abstract capability set the automation layer needs from a browser page.

    Implementations:
    - PlaywrightPageDriver: wraps a Playwright page inside a pooled context

    Methods raise instead of returning error flags, so callers can
    classify failures (navigation, missing selector, rejected value).
    """

    @property
    @abstractmethod
    def driver_name(self) -> str:
        """Return the driver name for logging."""
        ...

    @property
    @abstractmethod
    def url(self) -> str:
        """Current page URL."""
        ...

    @abstractmethod
    async def navigate(
        self, url: str, wait_until: str = "networkidle", timeout_ms: int | None = None
    ) -> NavigateResponse:
        """Navigate to a URL.

        Args:
            url: Target URL
            wait_until: Load state that ends navigation: domcontentloaded, load, networkidle
            timeout_ms: Override of the default timeout

        Returns:
            NavigateResponse with the final URL and title

        Raises:
            NavigationError: If the page does not load
        """
        ...

    @abstractmethod
    async def reload(self, wait_until: str = "networkidle") -> NavigateResponse:
        """Reload the current page.

        Raises:
            NavigationError: If the page does not load
        """
        ...

    @abstractmethod
    async def wait_for_selector(
        self, selector: str, state: str = "visible", timeout_ms: int | None = None
    ) -> None:
        """Wait for an element to reach a state.

        Args:
            selector: CSS or XPath selector
            state: visible, hidden, attached, detached
            timeout_ms: Override of the default timeout

        Raises:
            SelectorNotFoundError: If the state is not reached in time
        """
        ...

    @abstractmethod
    async def fill(self, selector: str, value: str) -> None:
        """Replace the value of a text-like input."""
        ...

    @abstractmethod
    async def click(self, selector: str) -> None:
        """Click the first element matching the selector."""
        ...

    @abstractmethod
    async def check(self, selector: str) -> None:
        """Check a checkbox or radio button."""
        ...

    @abstractmethod
    async def select_option(self, selector: str, value: str) -> list[str]:
        """Select an option by value or label.

        Returns:
            The values that ended up selected
        """
        ...

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run JavaScript in the page and return its JSON-able result.

        Args:
            script: A function expression; receives ``arg`` as its only parameter
            arg: Serializable argument passed to the function
        """
        ...

    @abstractmethod
    async def screenshot(self, path: str, full_page: bool = False) -> str:
        """Save a screenshot and return its path."""
        ...

    @abstractmethod
    async def title(self) -> str:
        """Get the current page title."""
        ...

    async def count(self, selector: str) -> int:
        """Count elements matching a CSS or XPath selector.

        Default implementation uses evaluate. Subclasses may override.
        """
        result = await self.evaluate(COUNT_ELEMENTS_JS, selector)
        return int(result or 0)

    async def query_all_texts(self, selector: str) -> list[str]:
        """Return the non-empty visible texts of all matching elements."""
        result = await self.evaluate(ELEMENT_TEXTS_JS, selector)
        return [str(text) for text in result or []]

    async def dispatch_input_events(self, selector: str) -> bool:
        """Fire input and change events so frameworks see a programmatic fill."""
        return bool(await self.evaluate(DISPATCH_EVENTS_JS, selector))
