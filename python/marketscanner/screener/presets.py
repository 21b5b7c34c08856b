"""Read-only catalog of named screener templates."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from .config import load_screener_config
from .schemas import ScreenerTemplate

DEFAULT_PRESETS: list[dict] = [
    {
        "id": "high-volume-breakout",
        "name": "High Volume Breakout",
        "description": "Stocks breaking out with high volume",
        "category": "Momentum",
        "criteria": {
            "filters": [
                {
                    "id": "1",
                    "field_category": "volume",
                    "field_name": "volume",
                    "operator": "GREATER_THAN",
                    "value": 1_000_000,
                },
                {
                    "id": "2",
                    "field_category": "technical",
                    "field_name": "volume_ratio",
                    "operator": "GREATER_THAN",
                    "value": 2,
                    "logical_join": "AND",
                },
                {
                    "id": "3",
                    "field_category": "price",
                    "field_name": "change_percent",
                    "operator": "GREATER_THAN",
                    "value": 3,
                    "logical_join": "AND",
                },
            ],
            "sort_by": "volume_ratio",
        },
    },
    {
        "id": "rsi-oversold",
        "name": "RSI Oversold",
        "description": "Stocks with RSI below 30 (oversold)",
        "category": "Technical",
        "criteria": {
            "filters": [
                {
                    "id": "1",
                    "field_category": "technical",
                    "field_name": "rsi",
                    "operator": "LESS_THAN",
                    "value": 30,
                },
                {
                    "id": "2",
                    "field_category": "volume",
                    "field_name": "volume",
                    "operator": "GREATER_THAN",
                    "value": 500_000,
                    "logical_join": "AND",
                },
            ],
            "sort_by": "rsi",
            "sort_order": "ASC",
        },
    },
    {
        "id": "gap-up",
        "name": "Gap Up Stocks",
        "description": "Stocks gapping up more than 2%",
        "category": "Day Trading",
        "criteria": {
            "filters": [
                {
                    "id": "1",
                    "field_category": "pattern",
                    "field_name": "gap_up",
                    "operator": "EQUALS",
                    "value": 1,
                },
                {
                    "id": "2",
                    "field_category": "volume",
                    "field_name": "volume",
                    "operator": "GREATER_THAN",
                    "value": 300_000,
                    "logical_join": "AND",
                },
            ],
            "sort_by": "change_percent",
        },
    },
]


class PresetCatalog(Protocol):
    def get(self, template_id: str) -> Optional[ScreenerTemplate]: ...

    def list(self) -> list[ScreenerTemplate]: ...


class StaticPresetCatalog:
    """In-memory catalog; templates are frozen models and never mutated."""

    def __init__(self, templates: Iterable[ScreenerTemplate]) -> None:
        self._templates: dict[str, ScreenerTemplate] = {}
        for template in templates:
            if template.id in self._templates:
                logger.warning(
                    "Duplicate template id {template_id}; keeping the first",
                    template_id=template.id,
                )
                continue
            self._templates[template.id] = template

    def get(self, template_id: str) -> Optional[ScreenerTemplate]:
        return self._templates.get(template_id)

    def list(self, category: Optional[str] = None) -> list[ScreenerTemplate]:
        templates = list(self._templates.values())
        if category:
            wanted = category.strip().lower()
            templates = [t for t in templates if t.category.lower() == wanted]
        return templates

    def __len__(self) -> int:
        return len(self._templates)


def _parse_templates(items: Iterable[dict]) -> list[ScreenerTemplate]:
    templates: list[ScreenerTemplate] = []
    for item in items:
        try:
            templates.append(ScreenerTemplate.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid preset {name}: {error}",
                name=item.get("name", item.get("id")),
                error=exc,
            )
    return templates


def load_preset_catalog() -> StaticPresetCatalog:
    """Load presets.yaml, falling back to the built-in presets."""
    payload = load_screener_config("presets")
    items = payload.get("templates") if isinstance(payload, dict) else None
    if not items:
        logger.info("No preset file found; using built-in presets")
        return StaticPresetCatalog(_parse_templates(DEFAULT_PRESETS))
    catalog = StaticPresetCatalog(_parse_templates(items))
    logger.info("Loaded {count} preset templates", count=len(catalog))
    return catalog
