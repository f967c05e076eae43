"""Fill and submit forms from a template and a field mapping."""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from src.automation.exceptions import FieldFillError, SelectorNotFoundError, SubmissionError
from src.automation.field_mapper import field_key
from src.automation.models import FillResult, FormField, FormTemplate, SubmissionResult
from src.browser_service.adapters.base import PageDriver
from src.browser_service.pool import BrowserPool
from src.config import Settings

logger = logging.getLogger(__name__)

# Tried in order; the first selector with a match is clicked
SUBMIT_SELECTORS = [
    "input[type='submit']",
    "button[type='submit']",
    "button:has-text('Submit')",
    "button:has-text('Send')",
    "button:has-text('Continue')",
    "input[value*='Submit']",
    "input[value*='Send']",
]

SUCCESS_SELECTORS = [
    ".success",
    ".alert-success",
    ".message-success",
    "[class*='success']",
    "[id*='success']",
    ".confirmation",
    ".thank-you",
    ".complete",
]

ERROR_SELECTORS = [
    ".error",
    ".alert-error",
    ".message-error",
    "[class*='error']",
    "[id*='error']",
    ".warning",
    ".alert-warning",
    ".invalid",
]

SUCCESS_TITLE_KEYWORDS = ["success", "thank", "complete", "confirm"]
ERROR_TITLE_KEYWORDS = ["error", "failed"]

TEXT_INPUT_TYPES = {"text", "email", "password", "tel", "url", "search", "number", "date", "textarea"}
SELECT_TYPES = {"select", "select-one", "select-multiple"}
CHECKABLE_TYPES = {"checkbox", "radio"}
TRUTHY_VALUES = {"true", "1", "yes", "on", "checked", "y"}


class FillerConfig(BaseModel):
    """Form filling settings."""

    wait_until: str = "networkidle"
    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    field_timeout_ms: int = Field(default=10000, ge=100)
    settle_delay: float = Field(default=0.5, ge=0)  # seconds after load
    fill_delay: float = Field(default=0.1, ge=0)  # seconds between fields
    verify_delay: float = Field(default=2.0, ge=0)  # seconds after clicking submit
    take_screenshots: bool = True
    screenshot_dir: str = "./data/screenshots"

    @classmethod
    def from_settings(cls, settings: Settings) -> "FillerConfig":
        return cls(
            navigation_timeout_ms=settings.browser_timeout_ms,
            fill_delay=settings.filler_fill_delay,
            verify_delay=settings.filler_submit_delay * 2,
            take_screenshots=settings.filler_take_screenshots,
            screenshot_dir=settings.screenshot_dir,
        )


def is_truthy(value: str) -> bool:
    return value.strip().lower() in TRUTHY_VALUES


class FormFiller:
    """Drives a pooled page through filling (and optionally submitting) a form."""

    def __init__(self, pool: BrowserPool, config: FillerConfig | None = None) -> None:
        self.pool = pool
        self.config = config or FillerConfig()

    async def fill_form(
        self,
        template: FormTemplate,
        mapping: dict[str, str],
        submit: bool = False,
        screenshots: bool | None = None,
    ) -> FillResult:
        """Fill every mapped field of a template on a fresh page.

        Per-field failures are collected in the result; fields without a
        mapped value are skipped. Filling and submission share one page,
        and only a fill without errors is submitted. ``screenshots``
        overrides ``take_screenshots`` for this call.

        Raises:
            NavigationError: If the form page does not load
        """
        start = time.time()
        capture = self.config.take_screenshots if screenshots is None else screenshots
        result = FillResult(url=template.url, total_fields=len(template.fields))
        logger.info(f"Filling {len(mapping)} mapped fields on {template.url}")

        async with self.pool.page() as page:
            await page.navigate(
                template.url,
                wait_until=self.config.wait_until,
                timeout_ms=self.config.navigation_timeout_ms,
            )
            if self.config.settle_delay:
                await asyncio.sleep(self.config.settle_delay)

            if capture:
                await self._take_screenshot(page, "initial", result)

            for field in template.fields:
                key = field_key(field)
                value = mapping.get(key, "")
                if not value:
                    result.skipped_fields.append(key)
                    continue

                try:
                    await self.fill_field(page, template.selector_for(field), field, value)
                    result.filled_fields += 1
                except (SelectorNotFoundError, FieldFillError) as e:
                    logger.warning(f"Field {key} on {template.url}: {e}")
                    result.errors.append(str(e))

                if self.config.fill_delay:
                    await asyncio.sleep(self.config.fill_delay)

            if capture:
                await self._take_screenshot(page, "final", result)
            result.success = result.filled_fields > 0 and not result.errors

            if submit and result.success:
                result.submission = await self.submit_and_verify(page)
            elif submit:
                logger.warning(f"Not submitting {template.url}: fill incomplete")

        result.execution_time = time.time() - start
        if result.total_fields:
            result.success_rate = result.filled_fields / result.total_fields * 100

        logger.info(
            f"Filled {result.filled_fields}/{result.total_fields} fields on {template.url} "
            f"({len(result.errors)} errors, {result.execution_time:.2f}s)"
        )
        return result

    async def fill_field(self, page: PageDriver, selector: str, field: FormField, value: str) -> None:
        """Fill one field according to its input type.

        Raises:
            SelectorNotFoundError: If the element never becomes visible
            FieldFillError: If the element rejects the value
        """
        await page.wait_for_selector(selector, state="visible", timeout_ms=self.config.field_timeout_ms)

        field_type = field.type.lower()
        if field_type in CHECKABLE_TYPES:
            if not is_truthy(value):
                return
            await page.check(selector)
        elif field_type in SELECT_TYPES:
            await page.select_option(selector, value)
        else:
            # Unknown types fall back to a plain fill
            await page.fill(selector, value)

        await page.dispatch_input_events(selector)

    async def submit_form(self, page: PageDriver) -> str:
        """Click the first submit control found on the page.

        Returns:
            The selector that was clicked

        Raises:
            SubmissionError: If no submit control exists
        """
        for selector in SUBMIT_SELECTORS:
            if await page.count(selector) > 0:
                try:
                    await page.click(selector)
                except FieldFillError as e:
                    raise SubmissionError(f"submit click failed: {e}") from e
                logger.info(f"Clicked submit control {selector}")
                return selector

        raise SubmissionError("no submit button found")

    async def check_submission_result(self, page: PageDriver, original_url: str) -> SubmissionResult:
        """Inspect the page after submitting for success and error signals."""
        result = SubmissionResult()

        for selector in SUCCESS_SELECTORS:
            result.success_indicators.extend(await page.query_all_texts(selector))
        for selector in ERROR_SELECTORS:
            result.error_messages.extend(await page.query_all_texts(selector))

        title = (await page.title()).lower()
        if any(keyword in title for keyword in SUCCESS_TITLE_KEYWORDS):
            result.success_indicators.append(f"title: {title}")
        if any(keyword in title for keyword in ERROR_TITLE_KEYWORDS):
            result.error_messages.append(f"title: {title}")

        # Texts can match several selectors
        result.success_indicators = list(dict.fromkeys(result.success_indicators))
        result.error_messages = list(dict.fromkeys(result.error_messages))

        if page.url != original_url:
            result.redirect_url = page.url

        result.success = not result.error_messages and (
            bool(result.redirect_url) or bool(result.success_indicators)
        )
        return result

    async def submit_and_verify(self, page: PageDriver) -> SubmissionResult:
        """Submit the form on the page and judge whether it went through."""
        start = time.time()
        original_url = page.url

        try:
            await self.submit_form(page)
        except SubmissionError as e:
            logger.warning(f"Submission failed on {original_url}: {e}")
            return SubmissionResult(
                success=False,
                submission_time=time.time() - start,
                error_messages=[str(e)],
            )

        if self.config.verify_delay:
            await asyncio.sleep(self.config.verify_delay)

        result = await self.check_submission_result(page, original_url)
        result.submission_time = time.time() - start
        logger.info(
            f"Submission on {original_url}: success={result.success} "
            f"(indicators={len(result.success_indicators)}, errors={len(result.error_messages)})"
        )
        return result

    async def _take_screenshot(self, page: PageDriver, stage: str, result: FillResult) -> None:
        directory = Path(self.config.screenshot_dir)
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        path = directory / f"screenshot_{timestamp}_{uuid.uuid4().hex[:6]}_{stage}.png"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            result.screenshots.append(await page.screenshot(str(path)))
        except Exception as e:
            logger.warning(f"Screenshot ({stage}) failed: {e}")
