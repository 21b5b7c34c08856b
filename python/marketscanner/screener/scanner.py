"""Scan executor: evaluate, rank, paginate and export."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from loguru import logger

from .constants import EXPORT_MAX_ROWS, EXPORT_PRECISION
from .criteria import referenced_fields, validate_criteria
from .errors import TemplateNotFound
from .export import matches_to_csv
from .expression import ExpressionEvaluator
from .fields import FieldResolver
from .presets import PresetCatalog
from .schemas import (
    CriteriaSet,
    InstrumentSnapshot,
    ScanMatch,
    ScanResult,
    ScreenerTemplate,
    SortOrder,
)


class Scanner:
    """Run one screening pass over an instrument universe."""

    def __init__(
        self,
        evaluator: Optional[ExpressionEvaluator] = None,
        export_max_rows: int = EXPORT_MAX_ROWS,
        export_precision: int = EXPORT_PRECISION,
    ) -> None:
        self.evaluator = evaluator if evaluator is not None else ExpressionEvaluator()
        self.export_max_rows = export_max_rows
        self.export_precision = export_precision

    @property
    def resolver(self) -> FieldResolver:
        return self.evaluator.predicates.resolver

    def scan(
        self,
        criteria: CriteriaSet,
        universe: Sequence[InstrumentSnapshot],
        offset: int = 0,
    ) -> ScanResult:
        """Return ranked matches for ``criteria``, one page of ``criteria.limit``."""
        validate_criteria(criteria)
        offset = max(offset, 0)
        ranked = self._rank(criteria, self._collect(criteria, universe))
        page = ranked[offset : offset + criteria.limit]
        logger.info(
            "Scan completed: {matched} matches out of {total} instruments",
            matched=len(ranked),
            total=len(universe),
        )
        return ScanResult(
            matches=page,
            total_evaluated=len(universe),
            total_matched=len(ranked),
            offset=offset,
            limit=criteria.limit,
        )

    def matching_symbols(
        self, criteria: CriteriaSet, universe: Sequence[InstrumentSnapshot]
    ) -> set[str]:
        """Return every matching symbol, unranked and unlimited."""
        return {
            snapshot.symbol
            for snapshot in universe
            if self.evaluator.evaluate(criteria, snapshot)
        }

    def scan_with_preset(
        self,
        template_id: str,
        universe: Sequence[InstrumentSnapshot],
        catalog: PresetCatalog,
        offset: int = 0,
    ) -> tuple[ScanResult, ScreenerTemplate]:
        template = catalog.get(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        logger.info(
            "Scanning with preset {template_id} ({name})",
            template_id=template.id,
            name=template.name,
        )
        return self.scan(template.criteria, universe, offset=offset), template

    def export(
        self,
        criteria: CriteriaSet,
        universe: Sequence[InstrumentSnapshot],
        max_rows: Optional[int] = None,
    ) -> str:
        """Re-run the scan without the page limit and render the matches as CSV."""
        validate_criteria(criteria)
        cap = max_rows if max_rows is not None else self.export_max_rows
        ranked = self._rank(criteria, self._collect(criteria, universe))
        if len(ranked) > cap:
            logger.warning(
                "Export truncated to {cap} of {total} matches",
                cap=cap,
                total=len(ranked),
            )
            ranked = ranked[:cap]
        return matches_to_csv(
            ranked,
            referenced_fields(criteria),
            resolver=self.resolver,
            precision=self.export_precision,
        )

    def _collect(
        self, criteria: CriteriaSet, universe: Sequence[InstrumentSnapshot]
    ) -> list[ScanMatch]:
        matched_at = datetime.now(timezone.utc)
        matches: list[ScanMatch] = []
        for snapshot in universe:
            if not self.evaluator.evaluate(criteria, snapshot):
                continue
            ranking: dict[str, Optional[float]] = {}
            if criteria.sort_by:
                ranking[criteria.sort_by] = self.resolver.resolve_value(
                    criteria.sort_by, snapshot
                )
            matches.append(
                ScanMatch(
                    symbol=snapshot.symbol,
                    matched_at=matched_at,
                    snapshot=snapshot,
                    ranking=ranking,
                )
            )
        return matches

    @staticmethod
    def _rank(criteria: CriteriaSet, matches: list[ScanMatch]) -> list[ScanMatch]:
        sort_by = criteria.sort_by
        if not sort_by:
            return matches
        descending = criteria.sort_order is SortOrder.DESC
        missing = -math.inf if descending else math.inf

        def sort_key(match: ScanMatch) -> float:
            value = match.ranking.get(sort_by)
            return missing if value is None else value

        return sorted(matches, key=sort_key, reverse=descending)
