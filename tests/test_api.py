"""Tests for the HTTP API surface."""
import pytest
from fastapi.testclient import TestClient

from marketscanner.screener.export import parse_export_csv
from marketscanner.screener.presets import DEFAULT_PRESETS, StaticPresetCatalog, _parse_templates
from marketscanner.server.main import create_app
from marketscanner.server.services.screener_service import (
    ScreenerService,
    set_screener_service,
)

OVERSOLD = {
    "filters": [
        {
            "id": "1",
            "field_category": "technical",
            "field_name": "rsi",
            "operator": "LESS_THAN",
            "value": 30,
        }
    ],
    "sort_by": "rsi",
    "sort_order": "ASC",
}


@pytest.fixture
def service(memory_source):
    return ScreenerService(memory_source, StaticPresetCatalog(_parse_templates(DEFAULT_PRESETS)))


@pytest.fixture
def client(service):
    app = create_app(service=service, start_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client
    set_screener_service(None)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestScanEndpoints:
    def test_scan(self, client):
        response = client.post("/api/screener/scan", json={"criteria": OVERSOLD})
        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 0
        data = body["data"]
        assert [m["symbol"] for m in data["matches"]] == ["AAPL", "TSLA"]
        assert data["total_evaluated"] == 4
        assert data["total_matched"] == 2
        assert data["matches"][0]["ranking"] == {"rsi": 25.0}

    def test_scan_pagination(self, client):
        criteria = {**OVERSOLD, "limit": 1}
        response = client.post("/api/screener/scan", json={"criteria": criteria, "offset": 1})
        data = response.json()["data"]
        assert [m["symbol"] for m in data["matches"]] == ["TSLA"]
        assert data["offset"] == 1
        assert data["limit"] == 1

    @pytest.mark.parametrize(
        "criteria",
        [
            {**OVERSOLD, "limit": 0},
            {"filters": [{**OVERSOLD["filters"][0], "logical_join": "AND"}]},
            {"filters": [{**OVERSOLD["filters"][0], "operator": "BETWEEN"}]},
        ],
    )
    def test_invalid_criteria_is_400(self, client, criteria):
        response = client.post("/api/screener/scan", json={"criteria": criteria})
        assert response.status_code == 400
        assert "Invalid criteria" in response.json()["detail"]

    def test_malformed_body_is_422(self, client):
        filters = [{**OVERSOLD["filters"][0], "operator": "NEAR"}]
        response = client.post("/api/screener/scan", json={"criteria": {"filters": filters}})
        assert response.status_code == 422

    def test_preset_scan(self, client):
        response = client.post("/api/screener/scan/preset", json={"template_id": "rsi-oversold"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["resolved_template"]["id"] == "rsi-oversold"
        assert [m["symbol"] for m in data["matches"]] == ["AAPL", "TSLA"]

    def test_preset_scan_by_path(self, client):
        response = client.get("/api/screener/scan/preset/rsi-oversold")
        assert response.status_code == 200
        assert response.json()["data"]["resolved_template"]["name"] == "RSI Oversold"

    def test_unknown_preset_is_404(self, client):
        response = client.post("/api/screener/scan/preset", json={"template_id": "nope"})
        assert response.status_code == 404
        assert client.get("/api/screener/scan/preset/nope").status_code == 404

    def test_export_csv(self, client):
        response = client.post("/api/screener/export", json={"criteria": {**OVERSOLD, "limit": 1}})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "scan_results.csv" in response.headers["content-disposition"]
        rows = parse_export_csv(response.text)
        assert [row["symbol"] for row in rows] == ["AAPL", "TSLA"]
        assert rows[0]["rsi"] == 25.0

    def test_export_invalid_criteria_is_400(self, client):
        response = client.post("/api/screener/export", json={"criteria": {**OVERSOLD, "limit": 5000}})
        assert response.status_code == 400


class TestTemplateEndpoints:
    def test_list_templates(self, client):
        response = client.get("/api/screener/templates")
        templates = response.json()["data"]["templates"]
        assert {t["id"] for t in templates} == {p["id"] for p in DEFAULT_PRESETS}

    def test_list_templates_by_category(self, client):
        response = client.get("/api/screener/templates", params={"category": "technical"})
        assert [t["id"] for t in response.json()["data"]["templates"]] == ["rsi-oversold"]

    def test_get_template(self, client):
        response = client.get("/api/screener/templates/gap-up")
        assert response.status_code == 200
        assert response.json()["data"]["category"] == "Day Trading"
        assert client.get("/api/screener/templates/nope").status_code == 404


class TestStatusEndpoint:
    def test_status_before_and_after_scan(self, client):
        data = client.get("/api/screener/status").json()["data"]
        assert data["is_scanning"] is False
        assert data["last_scan_time"] is None
        assert data["available_templates"] == len(DEFAULT_PRESETS)
        assert data["scheduler_running"] is False

        client.post("/api/screener/scan", json={"criteria": OVERSOLD})
        data = client.get("/api/screener/status").json()["data"]
        assert data["last_scan_time"] is not None


class TestAlertRuleEndpoints:
    def _create(self, client, **overrides):
        payload = {"name": "Oversold", "criteria": OVERSOLD, "priority": "HIGH", **overrides}
        response = client.post("/api/alert-rules", json=payload)
        assert response.status_code == 200
        return response.json()["data"]

    def test_create_and_list(self, client):
        rule = self._create(client)
        assert rule["priority"] == "HIGH"
        assert rule["is_active"] is True
        rules = client.get("/api/alert-rules").json()["data"]["rules"]
        assert [r["id"] for r in rules] == [rule["id"]]
        assert rules[0]["match_count"] == 0
        assert rules[0]["last_triggered"] is None
        status = client.get("/api/screener/status").json()["data"]
        assert status["active_alerts"] == 1

    def test_create_invalid_criteria_is_400(self, client):
        response = client.post(
            "/api/alert-rules", json={"name": "Bad", "criteria": {**OVERSOLD, "limit": 0}}
        )
        assert response.status_code == 400

    def test_update(self, client):
        rule = self._create(client)
        response = client.patch(f"/api/alert-rules/{rule['id']}", json={"is_active": False})
        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["is_active"] is False
        assert updated["name"] == "Oversold"
        assert updated["criteria"] == rule["criteria"]

    def test_update_criteria(self, client):
        rule = self._create(client)
        criteria = {**OVERSOLD, "sort_order": "DESC"}
        response = client.patch(f"/api/alert-rules/{rule['id']}", json={"criteria": criteria})
        assert response.json()["data"]["criteria"]["sort_order"] == "DESC"

    def test_update_missing_is_404(self, client):
        response = client.patch("/api/alert-rules/missing", json={"is_active": False})
        assert response.status_code == 404

    def test_delete(self, client):
        rule = self._create(client)
        assert client.delete(f"/api/alert-rules/{rule['id']}").status_code == 200
        assert client.get("/api/alert-rules").json()["data"]["rules"] == []
        assert client.delete(f"/api/alert-rules/{rule['id']}").status_code == 404

    def test_history_after_tick(self, client, service):
        rule = self._create(client)
        client.portal.call(service.alerts.run_tick)
        response = client.get(f"/api/alert-rules/{rule['id']}/history")
        assert response.status_code == 200
        (event,) = response.json()["data"]["events"]
        assert event["symbols"] == ["AAPL", "TSLA"]
        assert event["priority"] == "HIGH"
        rules = client.get("/api/alert-rules").json()["data"]["rules"]
        assert rules[0]["match_count"] == 2
        assert rules[0]["current_matches"] == ["AAPL", "TSLA"]

    def test_history_missing_is_404(self, client):
        assert client.get("/api/alert-rules/missing/history").status_code == 404
