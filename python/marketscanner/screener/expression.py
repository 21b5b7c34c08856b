"""Left-to-right evaluation of a criteria set."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .errors import UnknownField
from .predicates import PredicateEvaluator
from .schemas import CriteriaSet, FilterCondition, InstrumentSnapshot, LogicalJoin


class ExpressionEvaluator:
    """Fold filters strictly left to right: ``(((a OP1 b) OP2 c) OP3 d)``.

    There is no grouping and no AND-over-OR precedence. Saved rules depend on
    this ordering. A filter whose field cannot be resolved counts as a
    non-match so a gap in one instrument's data never aborts a scan.
    """

    def __init__(self, predicates: Optional[PredicateEvaluator] = None) -> None:
        self.predicates = predicates if predicates is not None else PredicateEvaluator()

    def evaluate(self, criteria: CriteriaSet, snapshot: InstrumentSnapshot) -> bool:
        filters = criteria.filters
        if not filters:
            return True
        result = self._evaluate_filter(filters[0], snapshot)
        for condition in filters[1:]:
            if condition.logical_join is LogicalJoin.OR:
                result = result or self._evaluate_filter(condition, snapshot)
            else:
                result = result and self._evaluate_filter(condition, snapshot)
        return result

    def _evaluate_filter(
        self, condition: FilterCondition, snapshot: InstrumentSnapshot
    ) -> bool:
        try:
            return self.predicates.evaluate(condition, snapshot)
        except UnknownField as exc:
            logger.debug(
                "Treating filter {filter_id} as non-match: {error}",
                filter_id=condition.id,
                error=exc,
            )
            return False
