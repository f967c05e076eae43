"""Tests for form detection and template generation."""

import pytest

from src.automation.exceptions import InvalidURLError, NavigationError
from src.automation.form_detector import (
    DetectorConfig,
    FormDetector,
    calculate_form_confidence,
    validate_url,
)
from src.automation.models import DetectedField, FormType
from tests.fakes import FakePageDriver, FakePool


def make_detector(page: FakePageDriver, **config) -> FormDetector:
    return FormDetector(FakePool(page), DetectorConfig(settle_delay=0, **config))


class TestFormConfidence:
    """Tests for calculate_form_confidence."""

    def test_complete_form_scores_full(self):
        """Test five labelled, named fields with a submit score 100."""
        fields = [
            DetectedField(name=f"f{i}", label=f"Field {i}", selector=f"#f{i}") for i in range(5)
        ]
        assert calculate_form_confidence(fields, has_submit=True) == 100

    def test_empty_form_scores_zero(self):
        """Test a form without fields or submit scores zero."""
        assert calculate_form_confidence([], has_submit=False) == 0

    def test_submit_only_below_threshold(self):
        """Test a lone submit button stays under the default threshold."""
        assert calculate_form_confidence([], has_submit=True) < 50

    def test_score_capped(self):
        """Test many fields never exceed 100."""
        fields = [DetectedField(name=f"f{i}", label="x", selector="#x") for i in range(20)]
        assert calculate_form_confidence(fields, has_submit=True) == 100


class TestValidateUrl:
    """Tests for URL validation."""

    def test_valid_url_returns_host(self):
        """Test the lowercased host is returned."""
        assert validate_url("https://Example.COM/signup") == "example.com"

    @pytest.mark.parametrize("url", ["", "example.com/signup", "ftp://example.com", "https://"])
    def test_invalid_urls(self, url):
        """Test URLs without an http(s) scheme or host are rejected."""
        with pytest.raises(InvalidURLError):
            validate_url(url)


class TestDetectForms:
    """Tests for detection on a loaded page."""

    @pytest.mark.asyncio
    async def test_signup_form_detected(self, signup_form_raw):
        """Test a labelled sign-up form is classified and scored."""
        page = FakePageDriver(forms=[signup_form_raw])

        result = await make_detector(page).detect_forms(page, "https://example.com/signup")

        assert len(result.forms) == 1
        form = result.forms[0]
        assert form.form_type == FormType.REGISTRATION
        assert form.confidence == 90
        assert [f.name for f in form.fields] == ["fname", "lname", "email", "phone"]
        assert result.total_fields == 4

    @pytest.mark.asyncio
    async def test_zero_field_form_excluded(self, signup_form_raw):
        """Test a form with no fields does not reach the result."""
        empty = {"index": 1, "selector": "#newsletter", "fields": [], "submit_buttons": []}
        page = FakePageDriver(forms=[empty, signup_form_raw])

        result = await make_detector(page).detect_forms(page, "https://example.com/")

        assert [form.selector for form in result.forms] == ["#signup"]

    @pytest.mark.asyncio
    async def test_unlabelled_fields_dropped(self):
        """Test fields with neither name nor label are ignored."""
        raw = {
            "index": 0,
            "fields": [
                {"name": "email", "type": "email", "label": "Email", "selector": "#email"},
                {"name": "", "type": "text", "label": "", "selector": "#anon"},
            ],
            "submit_buttons": [{"selector": "#go"}],
        }
        page = FakePageDriver(forms=[raw])

        forms = make_detector(page).parse_detected_forms([raw])

        assert [f.selector for f in forms[0].fields] == ["#email"]

    @pytest.mark.asyncio
    async def test_sorted_and_capped(self, signup_form_raw):
        """Test forms come out best first and limited to max_forms."""
        small = {
            "index": 1,
            "selector": "#login",
            "fields": [
                {"name": "user", "label": "User", "selector": "#user"},
                {"name": "pass", "type": "password", "label": "Password", "selector": "#pass"},
                {"name": "remember", "type": "checkbox", "label": "Remember", "selector": "#r"},
            ],
            "submit_buttons": [{"selector": "#login-go"}],
        }
        page = FakePageDriver(forms=[small, signup_form_raw])

        result = await make_detector(page, max_forms=1).detect_forms(page, "https://example.com/")

        assert len(result.forms) == 1
        assert result.forms[0].selector == "#signup"


class TestAnalyzePage:
    """Tests for the full page analysis."""

    @pytest.mark.asyncio
    async def test_navigates_then_detects(self, signup_form_raw):
        """Test analysis loads the URL in a leased page."""
        page = FakePageDriver(forms=[signup_form_raw])
        detector = make_detector(page)

        result = await detector.analyze_page("https://example.com/signup")

        assert page.actions[0] == ("navigate", "https://example.com/signup")
        assert detector.pool.leases == 1
        assert result.url == "https://example.com/signup"
        assert result.analysis_time >= 0

    @pytest.mark.asyncio
    async def test_invalid_url_never_leases(self):
        """Test malformed URLs fail before touching the pool."""
        detector = make_detector(FakePageDriver())

        with pytest.raises(InvalidURLError):
            await detector.analyze_page("not a url")
        assert detector.pool.leases == 0

    @pytest.mark.asyncio
    async def test_navigation_error_propagates(self):
        """Test load failures surface as NavigationError."""
        page = FakePageDriver()
        page.navigate_error = "net::ERR_NAME_NOT_RESOLVED"

        with pytest.raises(NavigationError):
            await make_detector(page).analyze_page("https://missing.example/")


class TestGenerateTemplate:
    """Tests for template generation."""

    @pytest.mark.asyncio
    async def test_template_from_form(self, signup_form_raw):
        """Test ids, selectors and rules of a generated template."""
        page = FakePageDriver(forms=[signup_form_raw])
        detector = make_detector(page)
        result = await detector.detect_forms(page, "https://www.example.com/signup")

        template = detector.generate_form_template(result.forms[0], "https://www.example.com/signup")

        assert template.id.startswith("template_www_example_com_registration_")
        assert template.domain == "www.example.com"
        assert template.version == 1
        assert template.success_rate == 0
        assert [f.id for f in template.fields] == [
            "field_0_fname",
            "field_1_lname",
            "field_2_email",
            "field_3_phone",
        ]
        assert template.selectors["email"] == "#email"
        rule_kinds = {(rule.field, rule.type) for rule in template.validation_rules}
        assert ("fname", "required") in rule_kinds
        assert ("email", "email") in rule_kinds
        assert ("phone", "required") not in rule_kinds

    @pytest.mark.asyncio
    async def test_optimize_repairs_stale_selector(self, make_template):
        """Test a selector that no longer matches is replaced and the version bumped."""
        template = make_template()
        template.selectors["fname"] = "#old-fname"
        counts = {"#lname": 1, "#email": 1, "#phone": 1, '[name="fname"]': 1}
        page = FakePageDriver(counts=counts)

        optimized = await make_detector(page).optimize_template(template)

        assert optimized.selectors["fname"] == '[name="fname"]'
        assert optimized.selectors["lname"] == "#lname"
        assert optimized.version == template.version + 1
        assert template.selectors["fname"] == "#old-fname"
