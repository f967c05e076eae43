"""Pytest configuration and fixtures."""

import os

import pytest

# Set test environment
os.environ["APP_ENV"] = "development"
os.environ["FILLER_TAKE_SCREENSHOTS"] = "false"

from src.automation.models import Address, FormField, FormTemplate, FormType, ProfileData  # noqa: E402
from src.automation.template_repository import FileTemplateRepository  # noqa: E402
from tests.fakes import FakePageDriver, FakePool  # noqa: E402


@pytest.fixture
def sample_profile():
    """Sample profile for testing."""
    return ProfileData(
        id="profile-1",
        first_name="John",
        last_name="Doe",
        email="john@example.com",
        phone="+1-555-0100",
        address=Address(
            street="1 Main St",
            city="Springfield",
            state="IL",
            postal_code="62701",
            country="US",
        ),
        date_of_birth="1990-01-15",
    )


@pytest.fixture
def signup_fields():
    """Template fields of a simple sign-up form."""
    return [
        FormField(id="field_0_fname", name="fname", label="First Name", selector="#fname", required=True),
        FormField(id="field_1_lname", name="lname", label="Last Name", selector="#lname", required=True),
        FormField(id="field_2_email", name="email", type="email", label="Email", selector="#email"),
        FormField(id="field_3_phone", name="phone", type="tel", label="Phone", selector="#phone"),
    ]


@pytest.fixture
def make_template(signup_fields):
    """Factory for templates on example.com."""

    def _make(
        template_id: str = "template_example_com_registration_0001",
        url: str = "https://example.com/signup",
        **overrides,
    ) -> FormTemplate:
        data = {
            "id": template_id,
            "url": url,
            "domain": "example.com",
            "form_type": FormType.REGISTRATION,
            "fields": signup_fields,
            "selectors": {field.name: field.selector for field in signup_fields},
        }
        data.update(overrides)
        return FormTemplate(**data)

    return _make


@pytest.fixture
def signup_form_raw():
    """Raw detection output for a labelled sign-up form."""
    return {
        "index": 0,
        "selector": "#signup",
        "action": "/register",
        "method": "post",
        "text": "Create an account",
        "fields": [
            {"name": "fname", "element_id": "fname", "type": "text", "label": "First Name",
             "selector": "#fname", "required": True},
            {"name": "lname", "element_id": "lname", "type": "text", "label": "Last Name",
             "selector": "#lname", "required": True},
            {"name": "email", "element_id": "email", "type": "email", "label": "Email",
             "selector": "#email", "required": True},
            {"name": "phone", "element_id": "phone", "type": "tel", "label": "Phone",
             "selector": "#phone"},
        ],
        "submit_buttons": [{"text": "Sign up", "selector": "#signup-submit", "type": "submit"}],
    }


@pytest.fixture
def fake_page():
    return FakePageDriver()


@pytest.fixture
def fake_pool(fake_page):
    return FakePool(fake_page)


@pytest.fixture
def template_repository(tmp_path):
    """File template repository in a temporary directory."""
    return FileTemplateRepository(tmp_path / "templates")
