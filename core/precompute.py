from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Hashable, List, Optional, Sequence

from core.filters import FilterAxisConfig, FilterState
from core.series import SeriesView

logger = logging.getLogger(__name__)

ComputeView = Callable[[FilterState], SeriesView]


class FilterPrecomputer:
    """One cached SeriesView per option of a discrete filter axis.

    Entries are keyed by the canonical FilterState key, so the other axes
    (currency, display mode) stay part of the identity. The whole cache is
    bound to a dataset token and dropped as soon as the token changes.
    """

    def __init__(self, compute: ComputeView, axis: Optional[FilterAxisConfig] = None):
        self._compute = compute
        self.axis = axis
        self._entries: Dict[str, SeriesView] = {}
        self._token: Optional[Hashable] = None
        self._task: Optional[asyncio.Task] = None
        self.hits = 0
        self.misses = 0

    @property
    def options(self) -> Sequence[str]:
        return self.axis.options if self.axis else ()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, state: FilterState) -> bool:
        return state.cache_key() in self._entries

    def bind(self, token: Hashable, compute: Optional[ComputeView] = None) -> None:
        if token == self._token and compute is None:
            return
        self.invalidate()
        self._token = token
        if compute is not None:
            self._compute = compute

    def invalidate(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._entries:
            logger.info("Dropping %d precomputed views", len(self._entries))
        self._entries.clear()

    def get(self, state: FilterState) -> SeriesView:
        key = state.cache_key()
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        view = self._compute(state)
        self._entries[key] = view
        return view

    def peek(self, state: FilterState) -> Optional[SeriesView]:
        return self._entries.get(state.cache_key())

    def variants(self, base: FilterState) -> List[FilterState]:
        if self.axis is None:
            return [base]
        return [base.with_option(self.axis.name, option) for option in self.axis.options]

    def warm(self, base: FilterState) -> int:
        """Compute every option of the axis synchronously; returns how many were computed."""
        computed = 0
        for state in self.variants(base):
            if state.cache_key() not in self._entries:
                self._entries[state.cache_key()] = self._compute(state)
                computed += 1
        return computed

    async def _warm_deferred(self, base: FilterState, token: Optional[Hashable]) -> int:
        computed = 0
        for state in self.variants(base):
            # One option per loop turn.
            await asyncio.sleep(0)
            if token != self._token:
                return computed
            if state.cache_key() in self._entries:
                continue
            self._entries[state.cache_key()] = self._compute(state)
            computed += 1
        logger.info("Precomputed %d views for %s", computed, self.axis.name if self.axis else "default")
        return computed

    def schedule_warm(self, base: FilterState) -> Optional[asyncio.Task]:
        """Queue low-priority warm-up on the running loop; None when no loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = loop.create_task(self._warm_deferred(base, self._token))
        return self._task

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        await asyncio.wait([task])
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
