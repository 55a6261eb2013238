"""Per-chart orchestration: Fetch -> Resolve -> Aggregate -> Precompute/Brush -> Color.

One ChartPipeline owns one chart's raw dataset, precompute cache, brush
mapper and color registry. Every state change builds a complete ChartState
and swaps it in one assignment, so a consumer reading `pipeline.state`
always sees filters, brush and views that belong together.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Tuple

import httpx

from core.brush import BrushRangeMapper
from core.colors import ColorAssignment, ColorRegistry
from core.data import DatasetCache, FetchResult, build_request, load_dataset
from core.errors import FieldNotFound
from core.fields import ChartFields, chart_fields, resolve_fields
from core.filters import (
    TIME_AXIS,
    BrushDomain,
    FilterAxisConfig,
    FilterState,
    normalize_brush,
    normalize_filters,
    server_axes_changed,
)
from core.precompute import FilterPrecomputer
from core.series import AGGREGATION_POLICIES, AggregationPolicy, SeriesView, aggregate, all_series_keys
from core.settings import PipelineSettings, load_settings

logger = logging.getLogger(__name__)

ChartStatus = Literal["loading", "ready", "empty", "no-data-in-range", "config-error"]


@dataclass(frozen=True)
class ChartConfig:
    chart_id: str
    fields: ChartFields
    title: str = ""
    chart_type: str = "bar"
    endpoint: str = ""
    api_key: Optional[str] = None
    axes: Tuple[FilterAxisConfig, ...] = ()
    policy: AggregationPolicy = "max"
    preferred_colors: Tuple[Tuple[str, str], ...] = ()
    strip_suffixes: bool = True
    precompute_axis: str = TIME_AXIS

    def axis(self, name: str) -> Optional[FilterAxisConfig]:
        for axis in self.axes:
            if axis.name == name:
                return axis
        return None

    @property
    def colors(self) -> Dict[str, str]:
        return dict(self.preferred_colors)


def _axes_from_raw(raw: Any) -> Tuple[FilterAxisConfig, ...]:
    if not raw:
        return ()
    items = raw.items() if isinstance(raw, Mapping) else ((a.get("name"), a) for a in raw)
    axes: List[FilterAxisConfig] = []
    for name, spec in items:
        if not name:
            continue
        if isinstance(spec, FilterAxisConfig):
            axes.append(spec)
            continue
        spec = spec or {}
        options = tuple(str(o) for o in (spec.get("options") or []) if str(o).strip())
        axes.append(
            FilterAxisConfig(
                name=str(name),
                options=options,
                param_name=str(spec.get("param_name") or spec.get("paramName") or name),
                server_side=bool(spec.get("server_side", spec.get("serverSide", False))),
            )
        )
    return tuple(axes)


def chart_config(raw: Mapping[str, Any]) -> ChartConfig:
    """Build a ChartConfig from a loosely-typed mapping (API body, sidebar state)."""
    policy = str(raw.get("policy") or "max").lower()
    if policy not in AGGREGATION_POLICIES:
        policy = "max"
    colors = raw.get("colors") or {}
    return ChartConfig(
        chart_id=str(raw.get("chart_id") or raw.get("id") or "chart"),
        title=str(raw.get("title") or ""),
        chart_type=str(raw.get("chart_type") or raw.get("chartType") or "bar"),
        endpoint=str(raw.get("endpoint") or ""),
        api_key=raw.get("api_key") or None,
        fields=chart_fields(
            str(raw.get("x_axis") or raw.get("xAxis") or ""),
            raw.get("y_axis") or raw.get("yAxis") or [],
            raw.get("group_by") or raw.get("groupBy") or None,
        ),
        axes=_axes_from_raw(raw.get("filters")),
        policy=policy,  # type: ignore[arg-type]
        preferred_colors=tuple(sorted((str(k), str(v)) for k, v in colors.items() if v)),
        strip_suffixes=bool(raw.get("strip_suffixes", True)),
    )


@dataclass(frozen=True)
class ChartState:
    filters: FilterState = field(default_factory=FilterState)
    brush: Optional[BrushDomain] = None
    view: Optional[SeriesView] = None
    displayed: Optional[SeriesView] = None
    colors: ColorAssignment = field(default_factory=ColorAssignment)
    status: ChartStatus = "loading"
    notice: Optional[str] = None
    error: Optional[str] = None
    generation: int = 0

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return list(self.displayed.rows) if self.displayed else []

    @property
    def series_keys(self) -> List[str]:
        return list(self.view.series_keys) if self.view else []


class Debouncer:
    """Trailing-edge debouncer: only the last call of a burst runs."""

    def __init__(self, delay: float):
        self.delay = max(0.0, float(delay))
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        await asyncio.sleep(self.delay)
        return await fn()

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Debounced call failed: %s", exc)

    def call(self, fn: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(fn))
        self._task.add_done_callback(self._log_failure)
        return self._task

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()

    async def wait(self) -> Any:
        task = self._task
        if task is None:
            return None
        await asyncio.wait([task])
        if task.cancelled():
            return None
        return task.result()


def _status_for(view: SeriesView, displayed: SeriesView, brush: Optional[BrushDomain]) -> ChartStatus:
    if view.empty:
        return "empty"
    if brush is not None and displayed.empty:
        return "no-data-in-range"
    return "ready"


class ChartPipeline:
    def __init__(
        self,
        config: ChartConfig,
        *,
        settings: Optional[PipelineSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[DatasetCache] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ):
        self.config = config
        self.settings = settings or load_settings()
        self._client = client
        self._owns_client = client is None
        self.cache = cache if cache is not None else DatasetCache(self.settings.cache_max_entries)
        self._debouncer = Debouncer(self.settings.debounce_seconds)

        axis = config.axis(config.precompute_axis)
        if axis is not None and axis.server_side:
            axis = None
        self.precomputer = FilterPrecomputer(self._compute, axis)

        self._rows: List[Dict[str, Any]] = []
        self._mapper: Optional[BrushRangeMapper] = None
        self._registry: Optional[ColorRegistry] = None
        self._generation = 0
        self._fetch_task: Optional[asyncio.Task] = None
        self.result: Optional[FetchResult] = None
        self.state = ChartState(filters=normalize_filters(filters or {}, config.axes))

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    def _compute(self, filters: FilterState) -> SeriesView:
        return aggregate(self._rows, self.config.fields, filters, policy=self.config.policy)

    # ---------------- Fetch ----------------
    async def load(self, *, refresh: bool = False) -> ChartState:
        """Fetch the dataset for the current filters and rebuild every derived view.

        A newer load cancels this one; a superseded load never touches state.
        Raises FieldNotFound after publishing a config-error state.
        """
        self._generation += 1
        generation = self._generation
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()

        request = build_request(
            self.config.endpoint,
            self.config.fields,
            self.state.filters,
            self.config.axes,
            self.config.api_key,
        )
        task = asyncio.get_running_loop().create_task(
            load_dataset(
                request,
                client=self._get_client(),
                cache=self.cache,
                chart_type=self.config.chart_type,
                group_by=self.config.fields.group.key if self.config.fields.group else None,
                x_key=self.config.fields.x.key,
                y_keys=self.config.fields.y_keys,
                timeout=self.settings.request_timeout,
                refresh=refresh,
            )
        )
        self._fetch_task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info("Discarded superseded fetch for %s", self.config.chart_id)
                return self.state
            raise
        if generation != self._generation:
            logger.info("Discarded superseded fetch for %s", self.config.chart_id)
            return self.state
        return self._bind_dataset(result, generation)

    def _bind_dataset(self, result: FetchResult, generation: int) -> ChartState:
        rows = result.rows
        fields = self.config.fields
        try:
            resolved = resolve_fields(rows[0], fields) if rows else None
        except FieldNotFound as exc:
            self._rows = []
            self._mapper = None
            self.precomputer.bind(generation)
            self.state = ChartState(
                filters=self.state.filters,
                status="config-error",
                notice=result.notice,
                error=str(exc),
                generation=generation,
            )
            logger.warning("Chart %s misconfigured: %s", self.config.chart_id, exc)
            raise

        self.result = result
        self._rows = rows
        self._registry = ColorRegistry(
            all_series_keys(rows, fields),
            preferred=self.config.colors,
            strip_suffixes=self.config.strip_suffixes,
        )
        self._mapper = BrushRangeMapper([row.get(resolved.x) for row in rows]) if resolved else None
        self.precomputer.bind(generation)

        state = self._render(self.state.filters, None, notice=result.notice, generation=generation)
        self.precomputer.schedule_warm(state.filters)
        return state

    def _render(
        self,
        filters: FilterState,
        brush: Optional[BrushDomain],
        *,
        notice: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> ChartState:
        view = self.precomputer.get(filters)
        displayed = self._mapper.apply(view, brush) if self._mapper else view
        colors = self._registry.assign(view.series_keys) if self._registry else ColorAssignment()
        self.state = ChartState(
            filters=filters,
            brush=brush,
            view=view,
            displayed=displayed,
            colors=colors,
            status=_status_for(view, displayed, brush),
            notice=notice,
            generation=self._generation if generation is None else generation,
        )
        return self.state

    # ---------------- Interaction ----------------
    def set_filter(self, axis: str, value: Optional[str]) -> ChartState:
        """Apply one filter option; the brush always resets.

        Client-side axes recompute immediately from the precompute cache.
        Server-side axes publish a loading state and schedule a debounced refetch.
        """
        raw = self.state.filters.as_dict()
        raw[axis] = value
        filters = normalize_filters(raw, self.config.axes)
        if filters == self.state.filters and self.state.brush is None:
            return self.state

        if server_axes_changed(self.state.filters, filters, self.config.axes):
            self.state = ChartState(filters=filters, status="loading", notice=self.state.notice, generation=self._generation)
            self._debouncer.call(self.load)
            return self.state
        if self.state.view is None or self._debouncer.pending:
            # No dataset for these filters yet; the next load renders them.
            self.state = replace(self.state, filters=filters, brush=None)
            return self.state
        state = self._render(filters, None, notice=self.state.notice)
        self.precomputer.schedule_warm(filters)
        return state

    def set_brush(self, start: Any = None, end: Any = None) -> ChartState:
        if self.state.view is None:
            return self.state
        return self._render(self.state.filters, normalize_brush(start, end), notice=self.state.notice)

    def clear_brush(self) -> ChartState:
        return self.set_brush(None, None)

    def brush_extent(self) -> Optional[BrushDomain]:
        """Full brushable range of the current (unbrushed) view."""
        if self._mapper is None or self.state.view is None:
            return None
        return self._mapper.extent(self.state.view)

    async def wait_refetch(self) -> ChartState:
        await self._debouncer.wait()
        return self.state

    async def warm_cache(self) -> int:
        """Finish deferred precomputation; returns the number of cached views."""
        await self.precomputer.wait()
        if self._rows:
            self.precomputer.warm(self.state.filters)
        return len(self.precomputer)

    async def close(self) -> None:
        self._debouncer.cancel()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self.precomputer.invalidate()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ChartPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
