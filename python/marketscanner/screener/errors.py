"""Error taxonomy for screening and alerting."""

from __future__ import annotations

from typing import Optional


class ScreenerError(Exception):
    """Base class for all screener errors."""


class InvalidCriteria(ScreenerError):
    """A filter or criteria set violates a structural invariant."""

    def __init__(self, reason: str, filter_id: Optional[str] = None) -> None:
        self.reason = reason
        self.filter_id = filter_id
        if filter_id is not None:
            message = f"Invalid criteria (filter {filter_id}): {reason}"
        else:
            message = f"Invalid criteria: {reason}"
        super().__init__(message)


class UnknownField(ScreenerError):
    """A field name could not be resolved on a snapshot."""

    def __init__(
        self, category: Optional[str], field_name: str, symbol: str
    ) -> None:
        self.category = category
        self.field_name = field_name
        self.symbol = symbol
        super().__init__(
            f"Unknown field {category or '*'}:{field_name} for {symbol}"
        )


class TemplateNotFound(ScreenerError):
    """A preset template id is not present in the catalog."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class AlertRuleNotFound(ScreenerError):
    """An alert rule id does not exist."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Alert rule not found: {rule_id}")


class DispatchFailure(ScreenerError):
    """A notification channel failed to deliver."""

    def __init__(self, rule_id: str, reason: str) -> None:
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Dispatch failed for rule {rule_id}: {reason}")


class EvaluationPanic(ScreenerError):
    """An unexpected exception escaped a single rule evaluation."""

    def __init__(self, rule_id: str, cause: BaseException) -> None:
        self.rule_id = rule_id
        self.cause = cause
        super().__init__(f"Evaluation of rule {rule_id} failed: {cause!r}")
