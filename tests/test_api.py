"""Integration tests for the chart HTTP API."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app, dataset_cache, http_client

pytestmark = pytest.mark.integration

ENDPOINT = "https://api.example.com/q"


@pytest.fixture
def api(daily_rows):
    """Return a TestClient whose outbound requests are answered by a mock transport."""

    state = {"payload": daily_rows, "status": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(state["status"], content=json.dumps(state["payload"]).encode("utf-8"))

    async def mock_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            yield client

    dataset_cache.cache_clear()
    app.dependency_overrides[http_client] = mock_client
    with TestClient(app) as client:
        client.remote = state  # type: ignore[attr-defined]
        yield client
    app.dependency_overrides.clear()
    dataset_cache.cache_clear()


def _body(**chart):
    base = {"endpoint": ENDPOINT, "x_axis": "date", "y_axis": ["revenue"], "filters": {"timeFilter": {"options": ["ALL", "D", "W"]}}}
    base.update(chart)
    return {"chart": base}


def test_time_windows(api) -> None:
    response = api.get("/meta/time-windows")
    assert response.status_code == 200
    keys = [w["key"] for w in response.json()["time_windows"]]
    assert keys == ["D", "W", "M", "Q", "Y", "ALL"]


def test_chart_view(api) -> None:
    response = api.post("/charts/view", json={**_body(), "filters": {"timeFilter": "W"}})
    assert response.status_code == 200
    payload = response.json()

    assert payload["status"] == "ready"
    assert payload["origin"] == "network"
    assert payload["filters"] == {"timeFilter": "W"}
    assert payload["series"] == ["revenue"]
    assert [r["date"] for r in payload["rows"]] == ["2024-01-01", "2024-01-08"]
    assert set(payload["colors"]) == {"revenue"}
    assert payload["domain"]["start"].startswith("2024-01-01")
    assert isinstance(payload["spec"], dict)


def test_chart_view_brush_without_rows(api) -> None:
    body = {**_body(), "brush": {"start": "2031-01-01", "end": "2031-02-01"}}
    payload = api.post("/charts/view", json=body).json()

    assert payload["status"] == "no-data-in-range"
    assert payload["rows"] == []


def test_chart_view_fallback_notice(api) -> None:
    api.remote["status"] = 500
    payload = api.post("/charts/view", json=_body(chart_type="line", y_axis=["protocol_revenue"])).json()

    assert payload["origin"] == "fallback"
    assert payload["notice"].startswith("Showing sample data.")
    assert len(payload["rows"]) == 6


def test_missing_field_is_422(api) -> None:
    response = api.post("/charts/view", json=_body(y_axis=["profit"]))
    assert response.status_code == 422
    payload = response.json()
    assert payload["type"] == "FieldNotFound"
    assert payload["missing"] == "profit"
    assert payload["available"] == ["date", "revenue"]


def test_bad_brush_is_422(api) -> None:
    response = api.post("/charts/view", json={**_body(), "brush": {"start": "soon", "end": "later"}})
    assert response.status_code == 422


def test_export_csv(api) -> None:
    response = api.post("/charts/export", json={**_body(chart_id="rev"), "filters": {"timeFilter": "W"}})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "rev.csv" in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0] == "date,revenue"
    assert len(lines) == 3
