"""CSV serialisation for scan matches."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Iterable, Optional

from .constants import EXPORT_PRECISION
from .fields import FieldResolver
from .schemas import ScanMatch

BASE_COLUMNS: tuple[str, str] = ("symbol", "timestamp")


def format_number(value: Optional[float], precision: int = EXPORT_PRECISION) -> str:
    if value is None:
        return ""
    return f"{value:.{precision}f}"


def matches_to_csv(
    matches: Iterable[ScanMatch],
    field_columns: list[str],
    resolver: Optional[FieldResolver] = None,
    precision: int = EXPORT_PRECISION,
) -> str:
    """Render matches as CSV: ``symbol,timestamp,<field columns>``."""
    resolver = resolver if resolver is not None else FieldResolver()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([*BASE_COLUMNS, *field_columns])
    for match in matches:
        snapshot = match.snapshot
        writer.writerow(
            [
                match.symbol,
                snapshot.timestamp.isoformat(),
                *(
                    format_number(resolver.resolve_value(name, snapshot), precision)
                    for name in field_columns
                ),
            ]
        )
    return buffer.getvalue()


def parse_export_csv(content: str) -> list[dict[str, object]]:
    """Parse exported CSV back into rows of symbol, timestamp and floats."""
    rows: list[dict[str, object]] = []
    reader = csv.DictReader(io.StringIO(content))
    for record in reader:
        row: dict[str, object] = {
            "symbol": record["symbol"],
            "timestamp": datetime.fromisoformat(record["timestamp"]),
        }
        for key, raw in record.items():
            if key in BASE_COLUMNS:
                continue
            row[key] = float(raw) if raw else None
        rows.append(row)
    return rows
