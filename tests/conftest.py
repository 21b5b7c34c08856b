"""Shared test fixtures and configuration."""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import pytest

from marketscanner.screener.schemas import (
    CriteriaSet,
    FilterCondition,
    InstrumentSnapshot,
)
from marketscanner.screener.universe import InMemorySnapshotSource

BASE_TIME = datetime(2025, 6, 2, 14, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep rule files and logs out of the real home directory."""
    monkeypatch.setenv("MARKETSCANNER_HOME", str(tmp_path / "home"))
    return tmp_path / "home"


@pytest.fixture
def make_snapshot() -> Callable[..., InstrumentSnapshot]:
    """Build a snapshot, optionally linked to prior field values."""

    def _make(
        symbol: str,
        fields: Dict[str, float],
        previous: Optional[Dict[str, float]] = None,
        timestamp: datetime = BASE_TIME,
    ) -> InstrumentSnapshot:
        prior = None
        if previous is not None:
            prior = InstrumentSnapshot(
                symbol=symbol,
                timestamp=timestamp - timedelta(minutes=1),
                fields=previous,
            )
        return InstrumentSnapshot(
            symbol=symbol, timestamp=timestamp, fields=fields, previous=prior
        )

    return _make


@pytest.fixture
def make_filter() -> Callable[..., FilterCondition]:
    counter = {"n": 0}

    def _make(
        field_name: str,
        operator: str,
        value=None,
        value2=None,
        join: Optional[str] = None,
        category: str = "technical",
    ) -> FilterCondition:
        counter["n"] += 1
        return FilterCondition(
            id=str(counter["n"]),
            field_category=category,
            field_name=field_name,
            operator=operator,
            value=value,
            value2=value2,
            logical_join=join,
        )

    return _make


@pytest.fixture
def make_criteria() -> Callable[..., CriteriaSet]:
    def _make(*filters: FilterCondition, **kwargs) -> CriteriaSet:
        return CriteriaSet(filters=list(filters), **kwargs)

    return _make


@pytest.fixture
def sample_universe(make_snapshot):
    """Small universe with mixed technical and price attributes."""
    return [
        make_snapshot("AAPL", {"price": 190.0, "rsi": 25.0, "volume_ratio": 2.5, "volume": 900_000}),
        make_snapshot("MSFT", {"price": 410.0, "rsi": 55.0, "volume_ratio": 1.1, "volume": 700_000}),
        make_snapshot("TSLA", {"price": 250.0, "rsi": 28.0, "volume_ratio": 3.4, "volume": 2_000_000}),
        make_snapshot("NEWCO", {"price": 12.0}),
    ]


@pytest.fixture
def memory_source(sample_universe) -> InMemorySnapshotSource:
    return InMemorySnapshotSource(sample_universe)
