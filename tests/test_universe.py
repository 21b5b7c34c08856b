"""Tests for snapshot sources."""
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from pydantic import ValidationError

from marketscanner.screener.scanner import Scanner
from marketscanner.screener.schemas import CriteriaSet, InstrumentSnapshot
from marketscanner.screener.universe import (
    HttpSnapshotSource,
    InMemorySnapshotSource,
    link_previous,
)

BASE_TIME = datetime(2025, 6, 2, 14, 30, tzinfo=timezone.utc)
STAMP = BASE_TIME.isoformat()


class TestInMemorySnapshotSource:
    def test_publish_links_previous(self):
        source = InMemorySnapshotSource()
        source.publish("AAPL", {"rsi": 29.0}, timestamp=BASE_TIME)
        latest = source.publish("AAPL", {"rsi": 31.0}, timestamp=BASE_TIME + timedelta(minutes=1))
        assert latest.fields == {"rsi": 31.0}
        assert latest.previous.fields == {"rsi": 29.0}

    def test_previous_chain_depth_is_one(self):
        source = InMemorySnapshotSource()
        for minute, value in enumerate((28.0, 29.0, 31.0)):
            source.publish("AAPL", {"rsi": value}, timestamp=BASE_TIME + timedelta(minutes=minute))
        (latest,) = source.current()
        assert latest.previous.fields == {"rsi": 29.0}
        assert latest.previous.previous is None

    def test_current_is_a_stable_copy(self):
        source = InMemorySnapshotSource()
        source.publish("AAPL", {"price": 190.0}, timestamp=BASE_TIME)
        universe = source.current()
        source.publish("MSFT", {"price": 410.0}, timestamp=BASE_TIME)
        assert [s.symbol for s in universe] == ["AAPL"]
        assert len(source) == 2

    def test_duplicate_publish_keeps_previous(self):
        source = InMemorySnapshotSource()
        t1 = BASE_TIME + timedelta(minutes=1)
        source.publish("AAPL", {"rsi": 25.0}, timestamp=BASE_TIME)
        source.publish("AAPL", {"rsi": 35.0}, timestamp=t1)
        source.publish("AAPL", {"rsi": 35.0}, timestamp=t1)
        (latest,) = source.current()
        assert latest.fields == {"rsi": 35.0}
        assert latest.previous.fields == {"rsi": 25.0}

    def test_older_snapshot_ignored(self):
        source = InMemorySnapshotSource()
        source.publish("AAPL", {"rsi": 25.0}, timestamp=BASE_TIME)
        newest = source.publish("AAPL", {"rsi": 35.0}, timestamp=BASE_TIME + timedelta(minutes=5))
        returned = source.publish("AAPL", {"rsi": 99.0}, timestamp=BASE_TIME + timedelta(minutes=1))
        assert returned == newest
        (latest,) = source.current()
        assert latest.fields == {"rsi": 35.0}
        assert latest.previous.fields == {"rsi": 25.0}

    def test_naive_timestamp_treated_as_utc(self):
        source = InMemorySnapshotSource()
        source.publish("AAPL", {"rsi": 25.0}, timestamp=BASE_TIME)
        latest = source.publish(
            "AAPL", {"rsi": 35.0}, timestamp=datetime(2025, 6, 2, 14, 31)
        )
        assert latest.timestamp.tzinfo is not None
        assert latest.previous.fields == {"rsi": 25.0}

    def test_seeded_snapshots_served_as_is(self, sample_universe):
        source = InMemorySnapshotSource(sample_universe)
        assert list(source.current()) == sample_universe


class TestLinkPrevious:
    def test_none_previous_is_identity(self, make_snapshot):
        snapshot = make_snapshot("AAPL", {"rsi": 1.0})
        assert link_previous(snapshot, None) is snapshot

    def test_previous_link_is_flattened(self, make_snapshot):
        older = make_snapshot("AAPL", {"rsi": 2.0}, timestamp=BASE_TIME, previous={"rsi": 1.0})
        newer = make_snapshot("AAPL", {"rsi": 3.0}, timestamp=BASE_TIME + timedelta(minutes=5))
        linked = link_previous(newer, older)
        assert linked.previous.fields == {"rsi": 2.0}
        assert linked.previous.previous is None


class TestNonFiniteValues:
    def test_snapshot_rejects_nan(self):
        with pytest.raises(ValidationError):
            InstrumentSnapshot(symbol="AAPL", timestamp=BASE_TIME, fields={"price": float("nan")})


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestHttpSnapshotSource:
    def test_fetch_parses_and_links(self):
        payloads = iter(
            [
                {"data": [{"symbol": "aapl", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"rsi": 29}}]},
                [{"symbol": "AAPL", "timestamp": "2025-06-02T14:31:00+00:00", "fields": {"rsi": 31}}],
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=next(payloads))

        source = HttpSnapshotSource("http://feed.test/snapshots", client=_client(handler))
        first = source.current()
        assert [s.symbol for s in first] == ["AAPL"]
        assert first[0].previous is None
        (second,) = source.current()
        assert second.fields == {"rsi": 31.0}
        assert second.previous.fields == {"rsi": 29.0}

    def test_malformed_items_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[
                    {"symbol": "AAPL", "timestamp": STAMP, "fields": {"price": 190}},
                    {"symbol": "NOTIME", "fields": {"price": 5}},
                    {"symbol": "BAD", "timestamp": STAMP, "fields": {"price": "not-a-number"}},
                    "garbage",
                    {"fields": {"price": 1}},
                ],
            )

        source = HttpSnapshotSource("http://feed.test/snapshots", client=_client(handler))
        assert [s.symbol for s in source.current()] == ["AAPL"]

    def test_retries_then_serves_last_known_universe(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(200, json=[{"symbol": "AAPL", "timestamp": STAMP, "fields": {"price": 190}}])
            return httpx.Response(503)

        source = HttpSnapshotSource(
            "http://feed.test/snapshots",
            max_retries=2,
            retry_backoff_s=0,
            client=_client(handler),
        )
        assert len(source.current()) == 1
        fallback = source.current()
        assert [s.symbol for s in fallback] == ["AAPL"]
        assert calls["n"] == 3

    def test_recovers_after_transient_failure(self):
        responses = iter([httpx.Response(500), httpx.Response(200, json=[{"symbol": "MSFT", "timestamp": STAMP, "fields": {}}])])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        source = HttpSnapshotSource(
            "http://feed.test/snapshots", retry_backoff_s=0, client=_client(handler)
        )
        assert [s.symbol for s in source.current()] == ["MSFT"]

    @pytest.mark.parametrize("payload", [{"data": "nope"}, 42])
    def test_non_list_payload_yields_empty(self, payload):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payload)

        source = HttpSnapshotSource("http://feed.test/snapshots", client=_client(handler))
        assert source.current() == ()

    def test_repeated_fetch_of_same_snapshot_keeps_previous(self):
        payloads = iter(
            [
                [{"symbol": "AAPL", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"rsi": 25}}],
                [{"symbol": "AAPL", "timestamp": "2025-06-02T14:31:00+00:00", "fields": {"rsi": 35}}],
                [{"symbol": "AAPL", "timestamp": "2025-06-02T14:31:00+00:00", "fields": {"rsi": 35}}],
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=next(payloads))

        source = HttpSnapshotSource("http://feed.test/snapshots", client=_client(handler))
        source.current()
        source.current()
        (latest,) = source.current()
        assert latest.fields == {"rsi": 35.0}
        assert latest.previous.fields == {"rsi": 25.0}

    def test_nan_price_ranks_as_missing(self):
        body = (
            b'[{"symbol": "A", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"price": 10}},'
            b' {"symbol": "B", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"price": NaN}},'
            b' {"symbol": "C", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"price": 30}},'
            b' {"symbol": "D", "timestamp": "2025-06-02T14:30:00+00:00", "fields": {"price": 20}}]'
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"content-type": "application/json"})

        source = HttpSnapshotSource("http://feed.test/snapshots", client=_client(handler))
        universe = source.current()
        snapshot_b = next(s for s in universe if s.symbol == "B")
        assert snapshot_b.fields == {}

        criteria = CriteriaSet(sort_by="price", sort_order="DESC", limit=3)
        result = Scanner().scan(criteria, universe)
        assert [match.symbol for match in result.matches] == ["C", "D", "A"]
