"""Field lookup on instrument snapshots."""

from __future__ import annotations

import math
from typing import Optional

from .errors import UnknownField
from .schemas import FieldCategory, InstrumentSnapshot

# Legacy dotted indicator paths mapped onto flat snapshot keys.
_DEFAULT_ALIASES: dict[FieldCategory, dict[str, str]] = {
    FieldCategory.PRICE: {
        "current_price": "price",
    },
    FieldCategory.VOLUME: {
        "volume.ratio": "volume_ratio",
    },
    FieldCategory.TECHNICAL: {
        "volume.ratio": "volume_ratio",
        "macd.macd": "macd",
        "macd.signal": "macd_signal",
        "macd.histogram": "macd_histogram",
        "bb.position": "bb_position",
        "sma20": "sma_20",
        "sma50": "sma_50",
        "sma200": "sma_200",
        "ema20": "ema_20",
        "ema50": "ema_50",
    },
}


class FieldResolver:
    """Resolve a symbolic field name to its current and previous value.

    Lookup only: indicator computation happens upstream of the snapshot feed.
    New screenable attributes are added by publishing them on snapshots or by
    registering an alias here.
    """

    def __init__(
        self, aliases: Optional[dict[FieldCategory, dict[str, str]]] = None
    ) -> None:
        source = aliases if aliases is not None else _DEFAULT_ALIASES
        self._aliases: dict[FieldCategory, dict[str, str]] = {
            category: dict(mapping) for category, mapping in source.items()
        }

    def register_alias(
        self, category: FieldCategory, alias: str, field_name: str
    ) -> None:
        self._aliases.setdefault(category, {})[alias] = field_name

    def canonical_name(
        self, category: Optional[FieldCategory], field_name: str
    ) -> str:
        if category is not None:
            return self._aliases.get(category, {}).get(field_name, field_name)
        for mapping in self._aliases.values():
            if field_name in mapping:
                return mapping[field_name]
        return field_name

    def resolve(
        self,
        category: Optional[FieldCategory],
        field_name: str,
        snapshot: InstrumentSnapshot,
    ) -> tuple[float, Optional[float]]:
        """Return ``(current, previous)``; raise UnknownField if absent."""
        key = self._lookup_key(category, field_name, snapshot)
        if key is None:
            raise UnknownField(
                category.value if category is not None else None,
                field_name,
                snapshot.symbol,
            )
        current = snapshot.fields[key]
        previous: Optional[float] = None
        if snapshot.previous is not None:
            previous = snapshot.previous.fields.get(key)
            if previous is not None and not math.isfinite(previous):
                previous = None
        return current, previous

    def resolve_value(
        self, field_name: str, snapshot: InstrumentSnapshot
    ) -> Optional[float]:
        """Return the current value of ``field_name`` or None when missing."""
        key = self._lookup_key(None, field_name, snapshot)
        if key is None:
            return None
        return snapshot.fields[key]

    def _lookup_key(
        self,
        category: Optional[FieldCategory],
        field_name: str,
        snapshot: InstrumentSnapshot,
    ) -> Optional[str]:
        for key in (field_name, self.canonical_name(category, field_name)):
            value = snapshot.fields.get(key)
            if value is not None and math.isfinite(value):
                return key
        return None
