"""Pluggable strategies for form classification and field matching.

Importing this package registers the built-in strategies.
"""

from src.automation.strategies.base import FieldMatcher, FormClassifier
from src.automation.strategies.keyword import KeywordFormClassifier
from src.automation.strategies.regex import FIELD_PATTERNS, RegexFieldMatcher
from src.automation.strategies.registry import StrategyRegistry

__all__ = [
    "FIELD_PATTERNS",
    "FieldMatcher",
    "FormClassifier",
    "KeywordFormClassifier",
    "RegexFieldMatcher",
    "StrategyRegistry",
]
