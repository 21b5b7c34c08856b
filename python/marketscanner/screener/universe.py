"""Instrument snapshot sources for the screener universe."""

from __future__ import annotations

import math
import threading
import time
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Protocol, Sequence

import httpx
from loguru import logger
from pydantic import ValidationError

from .constants import SOURCE_MAX_RETRIES, SOURCE_RETRY_BACKOFF_S, SOURCE_TIMEOUT_S
from .schemas import InstrumentSnapshot


class InstrumentSnapshotSource(Protocol):
    def current(self) -> Sequence[InstrumentSnapshot]: ...


def link_previous(
    snapshot: InstrumentSnapshot, previous: Optional[InstrumentSnapshot]
) -> InstrumentSnapshot:
    """Attach ``previous`` (stripped of its own link) to ``snapshot``."""
    if previous is None:
        return snapshot
    flat_previous = previous.model_copy(update={"previous": None})
    return snapshot.model_copy(update={"previous": flat_previous})


class InMemorySnapshotSource:
    """Snapshot feed fed by ``publish``; each symbol keeps its prior snapshot.

    A snapshot only replaces the latest one for its symbol when its timestamp
    is strictly newer; re-publishing the same or an older snapshot leaves the
    previous link untouched.

    ``current()`` returns a new tuple, so a scan holding an older universe is
    never affected by later publishes.
    """

    def __init__(self, snapshots: Iterable[InstrumentSnapshot] = ()) -> None:
        self._lock = threading.Lock()
        self._latest: dict[str, InstrumentSnapshot] = {}
        for snapshot in snapshots:
            self._latest[snapshot.symbol] = snapshot

    def publish(
        self,
        symbol: str,
        fields: Mapping[str, float],
        timestamp: Optional[datetime] = None,
    ) -> InstrumentSnapshot:
        snapshot = InstrumentSnapshot(
            symbol=symbol,
            timestamp=timestamp or datetime.now(timezone.utc),
            fields=dict(fields),
        )
        return self.publish_snapshot(snapshot)

    def publish_snapshot(self, snapshot: InstrumentSnapshot) -> InstrumentSnapshot:
        with self._lock:
            latest = self._latest.get(snapshot.symbol)
            if latest is not None and snapshot.timestamp <= latest.timestamp:
                logger.debug(
                    "Ignoring snapshot for {symbol} at {ts}: latest is {latest_ts}",
                    symbol=snapshot.symbol,
                    ts=snapshot.timestamp,
                    latest_ts=latest.timestamp,
                )
                return latest
            linked = link_previous(snapshot, latest)
            self._latest[snapshot.symbol] = linked
        return linked

    def current(self) -> tuple[InstrumentSnapshot, ...]:
        with self._lock:
            return tuple(self._latest.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)


class HttpSnapshotSource:
    """Pull ``[{symbol, timestamp, fields}]`` from a JSON feed.

    Each successful fetch is linked to the snapshots from the previous fetch.
    On failure the last good universe is served.
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = SOURCE_TIMEOUT_S,
        max_retries: int = SOURCE_MAX_RETRIES,
        retry_backoff_s: float = SOURCE_RETRY_BACKOFF_S,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.retry_backoff_s = retry_backoff_s
        self._client = client
        self._store = InMemorySnapshotSource()

    def current(self) -> tuple[InstrumentSnapshot, ...]:
        try:
            payload = self._fetch()
        except RuntimeError as exc:
            logger.warning(
                "Serving last known universe ({count} symbols): {error}",
                count=len(self._store),
                error=exc,
            )
            return self._store.current()
        for snapshot in self._parse(payload):
            self._store.publish_snapshot(snapshot)
        return self._store.current()

    def _fetch(self) -> object:
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                if self._client is not None:
                    response = self._client.get(self.url, timeout=self.timeout_s)
                else:
                    with httpx.Client(timeout=self.timeout_s) as client:
                        response = client.get(self.url)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "Failed to fetch snapshots on attempt {attempt}/{max_retries}: {error}",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=exc,
                )
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff_s * attempt)
        raise RuntimeError("Snapshot feed fetch failed") from last_error

    @staticmethod
    def _parse(payload: object) -> list[InstrumentSnapshot]:
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            logger.warning("Snapshot payload is not a list; ignoring")
            return []
        snapshots: list[InstrumentSnapshot] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            if not item.get("timestamp"):
                logger.warning(
                    "Skipping snapshot {symbol} without a timestamp",
                    symbol=item.get("symbol"),
                )
                continue
            try:
                snapshots.append(
                    InstrumentSnapshot.model_validate(
                        {
                            "symbol": str(item.get("symbol", "")).upper(),
                            "timestamp": item["timestamp"],
                            "fields": _finite_fields(item.get("fields") or {}),
                        }
                    )
                )
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed snapshot {symbol}: {error}",
                    symbol=item.get("symbol"),
                    error=exc,
                )
        return [s for s in snapshots if s.symbol]


def _finite_fields(fields: object) -> object:
    """Drop NaN and infinite values; a non-finite reading counts as missing."""
    if not isinstance(fields, dict):
        return fields
    return {
        name: value
        for name, value in fields.items()
        if not (isinstance(value, float) and not math.isfinite(value))
    }
