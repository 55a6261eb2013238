"""Pytest fixtures shared across the chart pipeline tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any, List

import httpx
import pytest

from core.fields import chart_fields
from core.filters import CURRENCY_AXIS, DISPLAY_MODE_AXIS, TIME_AXIS, FilterAxisConfig


@pytest.fixture
def daily_rows() -> List[dict]:
    """Return ten daily revenue rows, deliberately out of chronological order."""

    days = [f"2024-01-{d:02d}" for d in range(1, 11)]
    rows = [{"date": day, "revenue": float(i + 1) * 10} for i, day in enumerate(days)]
    return rows[5:] + rows[:5]


@pytest.fixture
def revenue_fields():
    return chart_fields("date", "revenue")


@pytest.fixture
def axes() -> tuple:
    return (
        FilterAxisConfig(name=TIME_AXIS, options=("ALL", "D", "W", "M", "Q", "Y")),
        FilterAxisConfig(name=CURRENCY_AXIS, options=("USD", "SOL")),
        FilterAxisConfig(name=DISPLAY_MODE_AXIS, options=("absolute", "percent")),
    )


@pytest.fixture
def json_transport() -> Callable[[Any], httpx.MockTransport]:
    """Build a MockTransport that records requests and answers with a fixed JSON payload."""

    def build(payload: Any, status_code: int = 200) -> httpx.MockTransport:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"), headers={"content-type": "application/json"})

        transport = httpx.MockTransport(handler)
        transport.seen = seen  # type: ignore[attr-defined]
        return transport

    return build


def pytest_collection_modifyitems(items: Sequence[pytest.Item]) -> None:
    """Enforce that every test has exactly one speed marker.

    - `unit`: pure, fast tests with no network or server.
    - `integration`: tests driving the HTTP API through a test client.
    """

    invalid: list[str] = []
    for item in items:
        has_unit = item.get_closest_marker("unit") is not None
        has_integration = item.get_closest_marker("integration") is not None
        if has_unit == has_integration:
            markers = []
            if has_unit:
                markers.append("unit")
            if has_integration:
                markers.append("integration")
            invalid.append(f"{item.nodeid} (markers={markers or 'none'})")

    if invalid:
        joined = "\n".join(f"- {nodeid}" for nodeid in invalid)
        raise pytest.UsageError(
            "Each test must have exactly one speed marker: `@pytest.mark.unit` or "
            "`@pytest.mark.integration`.\n"
            f"Offending tests:\n{joined}"
        )
