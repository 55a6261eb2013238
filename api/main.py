from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx
import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.schemas import ChartViewRequest, TimeWindowModel, TimeWindowsResponse
from core.charts import build_chart, to_vega_spec
from core.data import DatasetCache
from core.errors import FieldNotFound
from core.filters import TIME_WINDOWS, BrushDomain, normalize_brush
from core.pipeline import ChartPipeline, ChartState, chart_config
from core.settings import load_settings

SETTINGS = load_settings()
logging.basicConfig(level=SETTINGS.log_level)

app = FastAPI(title="Chart Pipeline API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def dataset_cache() -> DatasetCache:
    return DatasetCache(SETTINGS.cache_max_entries)


async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=SETTINGS.request_timeout) as client:
        yield client


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


def _error(status_code: int, exc: Exception, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__, **extra})


def _domain(domain: Optional[BrushDomain]) -> Optional[Dict[str, str]]:
    if domain is None:
        return None
    return {"start": domain.start.isoformat(), "end": domain.end.isoformat()}


async def _run_view(body: ChartViewRequest, client: httpx.AsyncClient) -> Tuple[ChartPipeline, ChartState]:
    config = chart_config(body.chart.model_dump())
    pipeline = ChartPipeline(config, settings=SETTINGS, client=client, cache=dataset_cache(), filters=body.filters)
    try:
        state = await pipeline.load(refresh=body.refresh)
        if body.brush is not None:
            state = pipeline.set_brush(body.brush.start, body.brush.end)
    finally:
        await pipeline.close()
    return pipeline, state


@app.get("/meta/time-windows")
def meta_time_windows():
    windows = [TimeWindowModel(key=w.key, label=w.label, granularity=w.granularity) for w in TIME_WINDOWS.values()]
    return _json(TimeWindowsResponse(time_windows=windows).model_dump())


@app.post("/charts/view")
async def chart_view(body: ChartViewRequest, client: httpx.AsyncClient = Depends(http_client)):
    try:
        if body.brush is not None:
            normalize_brush(body.brush.start, body.brush.end)
    except ValueError as exc:
        return _error(422, exc)
    try:
        pipeline, state = await _run_view(body, client)
        view = state.displayed
        spec = None
        if view is not None:
            chart = build_chart(
                view,
                state.colors,
                pipeline.config.fields,
                pipeline.config.chart_type,
                time_window=state.filters.time_window,
                title=pipeline.config.title,
            )
            spec = to_vega_spec(chart)
        return _json(
            {
                "status": state.status,
                "notice": state.notice,
                "origin": pipeline.result.origin if pipeline.result else None,
                "filters": state.filters.as_dict(),
                "x_key": view.x_key if view is not None else None,
                "series": state.series_keys,
                "rows": state.rows,
                "colors": state.colors.as_colors(),
                "domain": _domain(pipeline.brush_extent()),
                "brush": _domain(state.brush),
                "spec": spec,
            }
        )
    except FieldNotFound as exc:
        logger.warning("chart_view misconfigured: %s", exc)
        return _error(422, exc, missing=exc.field, available=exc.available)
    except Exception as exc:
        logger.exception("chart_view failed")
        return _error(500, exc)


@app.post("/charts/export")
async def chart_export(body: ChartViewRequest, client: httpx.AsyncClient = Depends(http_client)):
    try:
        pipeline, state = await _run_view(body, client)
    except FieldNotFound as exc:
        return _error(422, exc, missing=exc.field, available=exc.available)
    except ValueError as exc:
        return _error(422, exc)
    except Exception as exc:
        logger.exception("chart_export failed")
        return _error(500, exc)

    export_df = state.displayed.to_frame() if state.displayed is not None else pd.DataFrame()
    filename = f"{pipeline.config.chart_id}.csv"
    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
