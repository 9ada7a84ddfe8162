from __future__ import annotations


class ReviewError(Exception):
    """Base class for every error raised by the review engine."""


class RuleLoadError(ReviewError):
    """Raised when a rule catalog cannot be constructed."""


class MalformedRuleError(RuleLoadError):
    """Raised when a rule definition is structurally invalid."""


class InvalidSeverityForCategoryError(RuleLoadError):
    """Raised when a rule's severity is not allowed for its category."""


class OutOfBoundsError(ReviewError, IndexError):
    """Raised when a line range falls outside a source unit."""


class RuleEvaluationError(ReviewError):
    """Raised when one rule's predicate fails against one source unit."""

    def __init__(self, rule_id: str, path: str, cause: BaseException) -> None:
        super().__init__(f"rule {rule_id} failed on {path}: {type(cause).__name__}: {cause}")
        self.rule_id = rule_id
        self.path = path
        self.cause = cause


class NoRulesApplicableError(ReviewError):
    """Raised when a review has no rule that could be evaluated."""


class SourceUnavailableError(ReviewError):
    """Raised when source or diff content cannot be obtained."""
