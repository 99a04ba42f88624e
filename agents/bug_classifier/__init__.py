"""Bug Classifier – maps test output to the six supported failure kinds."""

from agents.bug_classifier.error_classifier import (
    CLASSIFY_PROMPT,
    ErrorClassifier,
    FallbackMatch,
    GrammarMatch,
    NoMatch,
    parse_errors,
    parse_line,
)

__all__ = [
    "CLASSIFY_PROMPT",
    "ErrorClassifier",
    "FallbackMatch",
    "GrammarMatch",
    "NoMatch",
    "parse_errors",
    "parse_line",
]
