from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

import httpx

from core.errors import FetchFailure, SchemaError
from core.fields import ChartFields
from core.filters import FilterAxisConfig, FilterState

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_CACHE_SIZE = 32

Origin = Literal["network", "cache", "fallback"]


@dataclass(frozen=True)
class FetchRequest:
    endpoint: str
    parameters: Tuple[Tuple[str, str], ...] = ()
    api_key: Optional[str] = None
    mapping: str = ""

    @property
    def method(self) -> str:
        return "POST" if self.parameters else "GET"

    @property
    def params(self) -> Dict[str, str]:
        return dict(self.parameters)

    def cache_key(self) -> str:
        return f"{self.endpoint}-{self.mapping}-{json.dumps(self.params, sort_keys=True)}"


def build_request(
    endpoint: str,
    fields: ChartFields,
    filters: FilterState,
    axes: Iterable[FilterAxisConfig] = (),
    api_key: Optional[str] = None,
) -> FetchRequest:
    params = filters.server_params(axes)
    return FetchRequest(
        endpoint=endpoint.strip(),
        parameters=tuple(sorted(params.items())),
        api_key=(api_key or "").strip() or None,
        mapping=fields.describe(),
    )


def auth_params(api_key: Optional[str]) -> Dict[str, str]:
    """Query params for an access token; `KEY&max_age=N` splits into api_key and max_age."""
    if not api_key:
        return {}
    value = api_key.strip()
    if "&max_age=" in value:
        key, max_age = value.split("&max_age=", 1)
        out: Dict[str, str] = {}
        if key.strip():
            out["api_key"] = key.strip()
        if max_age.strip():
            out["max_age"] = max_age.strip()
        return out
    return {"api_key": value}


def build_url(request: FetchRequest) -> httpx.URL:
    try:
        url = httpx.URL(request.endpoint)
    except Exception as exc:
        raise FetchFailure(f"Invalid URL: {request.endpoint}") from exc
    if url.scheme not in {"http", "https"} or not url.host:
        raise FetchFailure(f"Invalid URL: {request.endpoint}")
    return url.copy_merge_params(auth_params(request.api_key))


def _ensure_records(rows: Any) -> List[Dict[str, Any]]:
    if not all(isinstance(r, Mapping) for r in rows):
        raise SchemaError("Dataset rows must be objects")
    return [dict(r) for r in rows]


def extract_rows(payload: Any) -> List[Dict[str, Any]]:
    """Normalize every recognized response shape to a list of row dicts."""
    if isinstance(payload, list):
        return _ensure_records(payload)
    if not isinstance(payload, Mapping):
        raise SchemaError("API response does not have a recognized structure")

    query_result = payload.get("query_result")
    if isinstance(query_result, Mapping):
        data = query_result.get("data")
        if isinstance(data, Mapping) and isinstance(data.get("rows"), list):
            return _ensure_records(data["rows"])
    for key in ("data", "rows", "results"):
        if isinstance(payload.get(key), list):
            return _ensure_records(payload[key])
    if payload.get("error"):
        raise FetchFailure(f"API returned an error: {payload['error']}")
    raise SchemaError("API response does not have a recognized structure")


async def fetch_rows(request: FetchRequest, client: httpx.AsyncClient, *, timeout: float = DEFAULT_TIMEOUT) -> List[Dict[str, Any]]:
    url = build_url(request)
    try:
        if request.parameters:
            response = await client.post(url, json={"parameters": request.params}, timeout=timeout)
        else:
            response = await client.get(url, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise FetchFailure(f"API request timed out after {timeout:g} seconds") from exc
    except httpx.HTTPError as exc:
        raise FetchFailure(f"Network error: {exc}") from exc

    if response.status_code >= 400:
        raise FetchFailure(f"API request failed with status {response.status_code}: {response.reason_phrase}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise SchemaError("API response is not valid JSON") from exc
    return extract_rows(payload)


class DatasetCache:
    """Session-scoped dataset memo keyed by canonical request signature."""

    def __init__(self, max_entries: int = DEFAULT_CACHE_SIZE):
        self.max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[List[Dict[str, Any]]]:
        rows = self._entries.get(key)
        if rows is None:
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end(key)
        return rows

    def put(self, key: str, rows: List[Dict[str, Any]]) -> None:
        self._entries[key] = rows
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.info("Dataset cache full, evicted %s", evicted)

    def evict(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


# ---------------- Fallback datasets ----------------
SAMPLE_GROUP_FIELD = "segment"
SAMPLE_GROUP = "Sample"


def sample_rows(
    chart_type: str,
    group_by: Optional[str] = None,
    *,
    x_key: Optional[str] = None,
    y_keys: Sequence[str] = (),
) -> List[Dict[str, Any]]:
    """Built-in dataset for the chart type, renamed onto `x_key`/`y_keys`/`group_by` when given."""
    rows = _sample_for(chart_type, group_by)
    if x_key is None and not y_keys:
        return rows
    return fit_sample(rows, x_key, y_keys, group_by)


def fit_sample(
    rows: List[Dict[str, Any]], x_key: Optional[str], y_keys: Sequence[str], group_by: Optional[str] = None
) -> List[Dict[str, Any]]:
    first = rows[0]
    sample_x = next(iter(first))
    sample_group = SAMPLE_GROUP_FIELD if SAMPLE_GROUP_FIELD in first else None
    values = [k for k in first if k not in (sample_x, sample_group)]
    keys = list(y_keys) or values
    out: List[Dict[str, Any]] = []
    for row in rows:
        fitted: Dict[str, Any] = {x_key or sample_x: row[sample_x]}
        if group_by:
            fitted[group_by] = row[sample_group] if sample_group else SAMPLE_GROUP
        for i, key in enumerate(keys):
            fitted[key] = row[values[i % len(values)]]
        out.append(fitted)
    return out


def _sample_for(chart_type: str, group_by: Optional[str]) -> List[Dict[str, Any]]:
    chart_type = (chart_type or "").lower()
    if "bar" in chart_type:
        if "stacked" in chart_type and group_by:
            return [
                {"platform": "Raydium", "segment": "DEX", "protocol_revenue": 1250000},
                {"platform": "Raydium", "segment": "Lending", "protocol_revenue": 350000},
                {"platform": "Raydium", "segment": "NFT", "protocol_revenue": 75000},
                {"platform": "Orca", "segment": "DEX", "protocol_revenue": 980000},
                {"platform": "Orca", "segment": "Lending", "protocol_revenue": 120000},
                {"platform": "Orca", "segment": "Liquid Staking", "protocol_revenue": 420000},
                {"platform": "Drift", "segment": "DEX", "protocol_revenue": 750000},
                {"platform": "Drift", "segment": "Perpetuals", "protocol_revenue": 890000},
                {"platform": "Marinade", "segment": "Liquid Staking", "protocol_revenue": 1100000},
                {"platform": "Marinade", "segment": "Lending", "protocol_revenue": 120000},
            ]
        return [
            {"platform": "Raydium", "protocol_revenue": 1750000, "volume": 12500000, "users": 45000},
            {"platform": "Orca", "protocol_revenue": 1380000, "volume": 9800000, "users": 32000},
            {"platform": "Drift", "protocol_revenue": 1640000, "volume": 11200000, "users": 28000},
            {"platform": "Marinade", "protocol_revenue": 1220000, "volume": 5400000, "users": 56000},
            {"platform": "Jupiter", "protocol_revenue": 2100000, "volume": 18600000, "users": 78000},
            {"platform": "Solend", "protocol_revenue": 840000, "volume": 4200000, "users": 22000},
        ]
    if chart_type in {"line", "area", "stacked-area"} or "time" in chart_type:
        return [
            {"date": "2023-01-01", "protocol_revenue": 980000, "cumulative_revenue": 980000},
            {"date": "2023-02-01", "protocol_revenue": 1250000, "cumulative_revenue": 2230000},
            {"date": "2023-03-01", "protocol_revenue": 1420000, "cumulative_revenue": 3650000},
            {"date": "2023-04-01", "protocol_revenue": 1650000, "cumulative_revenue": 5300000},
            {"date": "2023-05-01", "protocol_revenue": 2100000, "cumulative_revenue": 7400000},
            {"date": "2023-06-01", "protocol_revenue": 1850000, "cumulative_revenue": 9250000},
        ]
    return [
        {"x": "A", "y": 100},
        {"x": "B", "y": 200},
        {"x": "C", "y": 150},
        {"x": "D", "y": 300},
        {"x": "E", "y": 250},
    ]


# ---------------- Public API ----------------
@dataclass(frozen=True)
class FetchResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    origin: Origin = "network"
    notice: Optional[str] = None
    cache_key: str = ""

    @property
    def is_fallback(self) -> bool:
        return self.origin == "fallback"


async def load_dataset(
    request: FetchRequest,
    *,
    client: httpx.AsyncClient,
    cache: Optional[DatasetCache] = None,
    chart_type: str = "",
    group_by: Optional[str] = None,
    x_key: Optional[str] = None,
    y_keys: Sequence[str] = (),
    timeout: float = DEFAULT_TIMEOUT,
    refresh: bool = False,
) -> FetchResult:
    """Fetch (or reuse) the raw dataset; network and schema problems become fallback data plus a notice."""
    key = request.cache_key()
    if cache is not None and not refresh:
        cached = cache.get(key)
        if cached is not None:
            logger.info("Dataset cache hit for %s", request.endpoint)
            return FetchResult(rows=cached, origin="cache", cache_key=key)

    try:
        rows = await fetch_rows(request, client, timeout=timeout)
    except FetchFailure as exc:
        kind = "Schema error" if isinstance(exc, SchemaError) else "Fetch failure"
        logger.warning("%s for %s, using sample data: %s", kind, request.endpoint, exc)
        return FetchResult(
            rows=sample_rows(chart_type, group_by, x_key=x_key, y_keys=y_keys),
            origin="fallback",
            notice=f"Showing sample data. {exc}",
            cache_key=key,
        )

    logger.info("Fetched %d rows from %s", len(rows), request.endpoint)
    if cache is not None:
        cache.put(key, rows)
    return FetchResult(rows=rows, origin="network", cache_key=key)
