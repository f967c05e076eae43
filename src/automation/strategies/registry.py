"""Registry for form classifiers and field matchers."""

import logging
from typing import TypeVar

from src.automation.strategies.base import FieldMatcher, FormClassifier

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=FormClassifier)
M = TypeVar("M", bound=FieldMatcher)


class StrategyRegistry:
    """Registry for pluggable detection and mapping strategies.

    Usage:
        @StrategyRegistry.register_classifier
        class KeywordFormClassifier(FormClassifier):
            ...

        classifier = StrategyRegistry.get_classifier("keyword")
    """

    _classifiers: dict[str, type[FormClassifier]] = {}
    _matchers: dict[str, type[FieldMatcher]] = {}

    @classmethod
    def register_classifier(cls, classifier_class: type[C]) -> type[C]:
        """Register a classifier class (decorator)."""
        name = classifier_class().name
        cls._classifiers[name] = classifier_class
        logger.debug(f"Registered form classifier: {name}")
        return classifier_class

    @classmethod
    def register_matcher(cls, matcher_class: type[M]) -> type[M]:
        """Register a field matcher class (decorator)."""
        name = matcher_class().name
        cls._matchers[name] = matcher_class
        logger.debug(f"Registered field matcher: {name}")
        return matcher_class

    @classmethod
    def get_classifier(cls, name: str) -> FormClassifier:
        """Get classifier instance by name.

        Raises:
            KeyError: If no classifier has that name
        """
        classifier_class = cls._classifiers.get(name.lower())
        if classifier_class is None:
            raise KeyError(f"Unknown form classifier: {name}")
        return classifier_class()

    @classmethod
    def get_matcher(cls, name: str) -> FieldMatcher:
        """Get matcher instance by name.

        Raises:
            KeyError: If no matcher has that name
        """
        matcher_class = cls._matchers.get(name.lower())
        if matcher_class is None:
            raise KeyError(f"Unknown field matcher: {name}")
        return matcher_class()

    @classmethod
    def list_classifiers(cls) -> list[str]:
        return list(cls._classifiers.keys())

    @classmethod
    def list_matchers(cls) -> list[str]:
        return list(cls._matchers.keys())
