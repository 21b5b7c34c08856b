"""Structural validation for criteria sets."""

from __future__ import annotations

import math
from typing import Optional, Union

from .constants import MAX_LIMIT, MIN_LIMIT
from .errors import InvalidCriteria
from .schemas import CriteriaSet, FilterCondition, FilterOperator


def as_number(value: Optional[Union[float, str]]) -> Optional[float]:
    """Return ``value`` as a finite float, or None if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def validate_filter(condition: FilterCondition) -> None:
    """Raise InvalidCriteria if ``condition`` cannot be evaluated."""
    value = as_number(condition.value)
    if value is None:
        raise InvalidCriteria(
            f"operator {condition.operator.value} requires a numeric value",
            filter_id=condition.id,
        )
    if condition.operator is FilterOperator.BETWEEN:
        value2 = as_number(condition.value2)
        if value2 is None:
            raise InvalidCriteria(
                "operator BETWEEN requires a numeric value2",
                filter_id=condition.id,
            )
        if value2 <= value:
            raise InvalidCriteria(
                "operator BETWEEN requires value2 > value",
                filter_id=condition.id,
            )
    if not condition.field_name.strip():
        raise InvalidCriteria("field_name must not be empty", filter_id=condition.id)


def validate_criteria(criteria: CriteriaSet) -> None:
    """Raise InvalidCriteria if ``criteria`` violates a structural invariant.

    Checks, in order: the limit bounds, that only the first filter lacks a
    logical join, and each filter's operand requirements.
    """
    if not MIN_LIMIT <= criteria.limit <= MAX_LIMIT:
        raise InvalidCriteria(
            f"limit must be within [{MIN_LIMIT}, {MAX_LIMIT}], got {criteria.limit}"
        )
    for index, condition in enumerate(criteria.filters):
        if index == 0 and condition.logical_join is not None:
            raise InvalidCriteria(
                "the first filter must not carry a logical_join",
                filter_id=condition.id,
            )
        if index > 0 and condition.logical_join is None:
            raise InvalidCriteria(
                "every filter after the first requires a logical_join",
                filter_id=condition.id,
            )
        validate_filter(condition)


def referenced_fields(criteria: CriteriaSet) -> list[str]:
    """Return field names referenced by filters and sort_by, in order, deduplicated."""
    names: list[str] = []
    for condition in criteria.filters:
        if condition.field_name not in names:
            names.append(condition.field_name)
    if criteria.sort_by and criteria.sort_by not in names:
        names.append(criteria.sort_by)
    return names
