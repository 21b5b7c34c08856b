"""Single-filter evaluation."""

from __future__ import annotations

from typing import Optional

from .criteria import as_number
from .fields import FieldResolver
from .schemas import FilterCondition, FilterOperator, InstrumentSnapshot


class PredicateEvaluator:
    """Evaluate one FilterCondition against one snapshot pair.

    ``BETWEEN`` is exclusive on both bounds unless ``inclusive_between`` is set.
    ``EQUALS`` is exact; callers needing tolerance should round upstream.
    Resolution failures surface as UnknownField for the caller to handle.
    """

    def __init__(
        self,
        resolver: Optional[FieldResolver] = None,
        inclusive_between: bool = False,
    ) -> None:
        self.resolver = resolver if resolver is not None else FieldResolver()
        self.inclusive_between = inclusive_between

    def evaluate(self, condition: FilterCondition, snapshot: InstrumentSnapshot) -> bool:
        current, previous = self.resolver.resolve(
            condition.field_category, condition.field_name, snapshot
        )
        value = as_number(condition.value)
        if value is None:
            return False
        operator = condition.operator

        if operator in (FilterOperator.GREATER_THAN, FilterOperator.ABOVE):
            return current > value
        if operator in (FilterOperator.LESS_THAN, FilterOperator.BELOW):
            return current < value
        if operator is FilterOperator.EQUALS:
            return current == value
        if operator is FilterOperator.BETWEEN:
            upper = as_number(condition.value2)
            if upper is None:
                return False
            if self.inclusive_between:
                return value <= current <= upper
            return value < current < upper
        if operator is FilterOperator.CROSSES_ABOVE:
            return previous is not None and previous <= value and current > value
        if operator is FilterOperator.CROSSES_BELOW:
            return previous is not None and previous >= value and current < value
        return False
