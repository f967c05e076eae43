"""Tests for the form filler."""

import pytest

from src.automation.exceptions import NavigationError
from src.automation.form_filler import FillerConfig, FormFiller, is_truthy
from src.automation.models import FormField
from tests.fakes import FakePageDriver, FakePool

MAPPING = {"fname": "John", "lname": "Doe", "email": "john@example.com", "phone": "+1-555-0100"}


def make_filler(page: FakePageDriver, **config) -> FormFiller:
    options = {
        "settle_delay": 0,
        "fill_delay": 0,
        "verify_delay": 0,
        "take_screenshots": False,
    }
    options.update(config)
    return FormFiller(FakePool(page), FillerConfig(**options))


class TestFillForm:
    """Tests for FormFiller.fill_form."""

    @pytest.mark.asyncio
    async def test_fills_every_mapped_field(self, make_template):
        """Test a complete mapping fills all fields in template order."""
        page = FakePageDriver()

        result = await make_filler(page).fill_form(make_template(), MAPPING)

        assert result.success is True
        assert result.filled_fields == 4
        assert result.total_fields == 4
        assert result.success_rate == 100
        assert result.submission is None
        assert page.actions[0] == ("navigate", "https://example.com/signup")
        assert [a[1] for a in page.performed("fill")] == ["#fname", "#lname", "#email", "#phone"]

    @pytest.mark.asyncio
    async def test_unmapped_fields_skipped(self, make_template):
        """Test fields without a value are skipped, not counted as errors."""
        page = FakePageDriver()

        result = await make_filler(page).fill_form(make_template(), {"fname": "John", "email": "j@x.io"})

        assert result.filled_fields == 2
        assert result.skipped_fields == ["lname", "phone"]
        assert result.errors == []
        assert result.success is True
        assert result.success_rate == 50

    @pytest.mark.asyncio
    async def test_field_errors_collected(self, make_template):
        """Test missing and rejecting elements are reported per field."""
        page = FakePageDriver(missing={"#lname"}, reject={"#phone"})

        result = await make_filler(page).fill_form(make_template(), MAPPING)

        assert result.filled_fields == 2
        assert len(result.errors) == 2
        assert result.success is False

    @pytest.mark.asyncio
    async def test_selectors_map_overrides_field_selector(self, make_template):
        """Test the template's selectors map wins over the field selector."""
        template = make_template()
        template.selectors["email"] = '[name="email"]'
        page = FakePageDriver()

        await make_filler(page).fill_form(template, {"email": "john@example.com"})

        assert page.performed("fill") == [("fill", '[name="email"]', "john@example.com")]

    @pytest.mark.asyncio
    async def test_navigation_error_propagates(self, make_template):
        """Test a page that fails to load aborts the fill."""
        page = FakePageDriver()
        page.navigate_error = "timeout"

        with pytest.raises(NavigationError):
            await make_filler(page).fill_form(make_template(), MAPPING)

    @pytest.mark.asyncio
    async def test_screenshots_taken(self, make_template, tmp_path):
        """Test initial and final screenshots are recorded."""
        page = FakePageDriver()
        filler = make_filler(page, take_screenshots=True, screenshot_dir=str(tmp_path / "shots"))

        result = await filler.fill_form(make_template(), MAPPING)

        assert len(result.screenshots) == 2
        assert result.screenshots[0].endswith("_initial.png")
        assert result.screenshots[1].endswith("_final.png")
        assert (tmp_path / "shots").is_dir()


class TestFillField:
    """Tests for type-specific filling."""

    @pytest.mark.asyncio
    async def test_checkbox_checked_for_truthy_value(self):
        page = FakePageDriver()
        field = FormField(id="f", name="terms", type="checkbox", selector="#terms")

        await make_filler(page).fill_field(page, "#terms", field, "yes")

        assert page.performed("check") == [("check", "#terms")]

    @pytest.mark.asyncio
    async def test_checkbox_left_for_falsy_value(self):
        """Test falsy values leave checkboxes untouched."""
        page = FakePageDriver()
        field = FormField(id="f", name="news", type="checkbox", selector="#news")

        await make_filler(page).fill_field(page, "#news", field, "no")

        assert page.performed("check") == []

    @pytest.mark.asyncio
    async def test_select_option(self):
        page = FakePageDriver()
        field = FormField(id="f", name="country", type="select", selector="#country")

        await make_filler(page).fill_field(page, "#country", field, "US")

        assert page.performed("select") == [("select", "#country", "US")]

    def test_truthy_values(self):
        assert is_truthy(" Yes ")
        assert is_truthy("1")
        assert not is_truthy("false")


class TestSubmission:
    """Tests for submitting and verifying."""

    @pytest.mark.asyncio
    async def test_redirect_counts_as_success(self, make_template):
        """Test leaving the form page without errors is a success."""
        page = FakePageDriver(counts={"button[type='submit']": 1})
        page.url_after_click = "https://example.com/welcome"

        result = await make_filler(page).fill_form(make_template(), MAPPING, submit=True)

        assert result.submission.success is True
        assert result.submission.redirect_url == "https://example.com/welcome"
        assert page.performed("click") == [("click", "button[type='submit']")]

    @pytest.mark.asyncio
    async def test_success_message_counts_as_success(self):
        """Test a success message on the same page is a success."""
        page = FakePageDriver(
            counts={"input[type='submit']": 1},
            texts={".alert-success": ["Thanks for registering"]},
        )

        result = await make_filler(page).submit_and_verify(page)

        assert result.success is True
        assert result.success_indicators == ["Thanks for registering"]

    @pytest.mark.asyncio
    async def test_error_messages_fail_submission(self):
        """Test visible errors fail the submission even after a redirect."""
        page = FakePageDriver(
            counts={"input[type='submit']": 1},
            texts={".error": ["Email already taken"], "[class*='error']": ["Email already taken"]},
            page_title="Registration failed",
        )
        page.url_after_click = "https://example.com/signup?err=1"

        result = await make_filler(page).submit_and_verify(page)

        assert result.success is False
        assert result.error_messages == ["Email already taken", "title: registration failed"]

    @pytest.mark.asyncio
    async def test_no_submit_button(self):
        """Test a page without a submit control reports the failure."""
        page = FakePageDriver()

        result = await make_filler(page).submit_and_verify(page)

        assert result.success is False
        assert result.error_messages == ["no submit button found"]
        assert page.performed("click") == []

    @pytest.mark.asyncio
    async def test_failed_fill_not_submitted(self, make_template):
        """Test a form with no filled fields is never submitted."""
        page = FakePageDriver(
            missing={"#fname", "#lname", "#email", "#phone"},
            counts={"input[type='submit']": 1},
        )

        result = await make_filler(page).fill_form(make_template(), MAPPING, submit=True)

        assert result.filled_fields == 0
        assert len(result.errors) == 4
        assert result.submission is None
        assert page.performed("click") == []
