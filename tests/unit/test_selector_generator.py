"""Tests for selector generation and validation."""

from unittest.mock import AsyncMock

import pytest

from src.automation.exceptions import SelectorNotFoundError
from src.automation.selector_generator import (
    ElementDescriptor,
    SelectorGenerator,
    is_stable_class,
)
from tests.fakes import FakePageDriver


@pytest.fixture
def element():
    return ElementDescriptor(
        tag="input",
        id="email",
        name="email",
        classes=["form-control", "ng-touched", "a1b2c3d4"],
        data_attributes={"data-testid": "email-input"},
        xpath='//*[@id="email"]',
        css_path="form > input#email",
    )


class TestGenerateSelectors:
    """Tests for candidate generation."""

    def test_priority_order(self, element):
        """Test candidates follow strategy priority."""
        candidates = SelectorGenerator().generate_selectors(element)

        assert [c.strategy for c in candidates] == [
            "id",
            "name",
            "data_attribute",
            "class",
            "xpath",
            "css_path",
        ]
        assert candidates[0].selector == "#email"
        assert candidates[1].selector == '[name="email"]'
        assert candidates[2].selector == '[data-testid="email-input"]'
        assert candidates[3].selector == "input.form-control"

    def test_unusual_id_is_quoted(self):
        """Test ids that are not CSS identifiers use an attribute selector."""
        candidates = SelectorGenerator().generate_selectors(ElementDescriptor(id="user.email"))

        assert candidates[0].selector == '[id="user.email"]'

    def test_duplicates_removed(self):
        """Test identical selectors from different strategies appear once."""
        element = ElementDescriptor(id="email", xpath="#email", css_path="#email")

        candidates = SelectorGenerator().generate_selectors(element)

        assert [c.selector for c in candidates] == ["#email"]

    def test_unstable_classes(self):
        """Test framework and hashed classes are rejected."""
        assert is_stable_class("form-control")
        assert is_stable_class("btn-primary")
        assert not is_stable_class("ng-touched")
        assert not is_stable_class("css-1x2y3z")
        assert not is_stable_class("a1b2c3d4")
        assert not is_stable_class("a-really-long-class-name-here")

    @pytest.mark.parametrize("class_name", ["field1", "col12", "header", "col-md-12", "h1-title"])
    def test_ordinary_classes_with_digits_kept(self, class_name):
        assert is_stable_class(class_name)

    @pytest.mark.parametrize("class_name", ["x9f8k2", "jss42ab", "input_a8c2e1"])
    def test_hashed_segments_rejected(self, class_name):
        assert not is_stable_class(class_name)


class TestValidateSelector:
    """Tests for live selector scoring."""

    @pytest.mark.asyncio
    async def test_unique_match(self):
        """Test exactly one match is a perfect selector."""
        page = FakePageDriver(counts={"#email": 1})

        validation = await SelectorGenerator().validate_selector(page, "#email")

        assert validation.valid is True
        assert validation.unique is True
        assert validation.confidence == 100

    @pytest.mark.asyncio
    async def test_no_match(self):
        """Test zero matches is invalid with zero confidence."""
        validation = await SelectorGenerator().validate_selector(FakePageDriver(), "#gone")

        assert validation.valid is False
        assert validation.unique is False
        assert validation.confidence == 0

    @pytest.mark.asyncio
    async def test_multiple_matches_dilute(self):
        """Test n matches score 50/n."""
        page = FakePageDriver(counts={"input": 4})

        validation = await SelectorGenerator().validate_selector(page, "input")

        assert validation.valid is True
        assert validation.unique is False
        assert validation.match_count == 4
        assert validation.confidence == 12.5


class TestFindBestSelector:
    """Tests for ranking selectors on a page."""

    @pytest.mark.asyncio
    async def test_unique_beats_priority(self, element):
        """Test a unique lower-priority selector beats an ambiguous higher one."""
        page = FakePageDriver(counts={"#email": 2, '[name="email"]': 1})

        best = await SelectorGenerator().find_best_selector(page, element)

        assert best.selector == '[name="email"]'
        assert best.confidence == 100

    @pytest.mark.asyncio
    async def test_equal_confidence_keeps_priority(self, element):
        """Test ties go to the higher-priority strategy."""
        page = FakePageDriver(counts={"#email": 1, '[name="email"]': 1})

        best = await SelectorGenerator().find_best_selector(page, element)

        assert best.strategy == "id"

    @pytest.mark.asyncio
    async def test_nothing_matches(self, element):
        """Test an element with no working selector raises."""
        with pytest.raises(SelectorNotFoundError):
            await SelectorGenerator().find_best_selector(FakePageDriver(), element)

    @pytest.mark.asyncio
    async def test_optimize_drops_invalid(self, element):
        """Test optimize_selectors keeps only matching candidates."""
        generator = SelectorGenerator()
        page = FakePageDriver(counts={"input.form-control": 3, "#email": 1})

        ranked = await generator.optimize_selectors(page, generator.generate_selectors(element))

        assert [c.selector for c in ranked] == ["#email", "input.form-control"]


class TestDescribeElement:
    """Tests for reading element attributes."""

    @pytest.mark.asyncio
    async def test_describe_and_alternatives(self):
        """Test alternatives exclude the selector already in use."""
        page = FakePageDriver(
            descriptions={"#email": {"tag": "input", "id": "email", "name": "email"}}
        )
        generator = SelectorGenerator()

        element = await generator.describe_element(page, "#email")
        alternatives = await generator.generate_alternative_selectors(page, "#email")

        assert element.name == "email"
        assert alternatives == ['[name="email"]']

    @pytest.mark.asyncio
    async def test_missing_element(self):
        """Test describing a missing element raises."""
        with pytest.raises(SelectorNotFoundError):
            await SelectorGenerator().describe_element(FakePageDriver(), "#nope")


class TestSelectorStability:
    """Tests for stability across reloads."""

    @pytest.mark.asyncio
    async def test_stable_selector(self):
        """Test a selector unique after every reload scores 1."""
        page = FakePageDriver(counts={"#email": 1})

        stability = await SelectorGenerator().test_selector_stability(page, "#email", iterations=3)

        assert stability == 1.0
        assert len(page.performed("reload")) == 3

    @pytest.mark.asyncio
    async def test_flaky_selector(self):
        """Test the score is the fraction of unique reloads."""
        page = FakePageDriver()
        page.count = AsyncMock(side_effect=[1, 2, 0, 1])

        stability = await SelectorGenerator().test_selector_stability(page, "#x", iterations=4)

        assert stability == 0.5

    @pytest.mark.asyncio
    async def test_no_iterations(self):
        """Test non-positive iterations score zero without reloading."""
        page = FakePageDriver(counts={"#email": 1})

        assert await SelectorGenerator().test_selector_stability(page, "#email", iterations=0) == 0
        assert page.performed("reload") == []
