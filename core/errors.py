from __future__ import annotations

from typing import Iterable, List


class PipelineError(Exception):
    """Base class for chart pipeline errors."""


class FetchFailure(PipelineError):
    """Transport failure, non-success status, or an explicit error-shaped response."""


class SchemaError(FetchFailure):
    """Response body does not match any recognized dataset shape."""


class FieldNotFound(PipelineError):
    """A declared x/y/group field cannot be resolved against the dataset."""

    def __init__(self, field: str, available: Iterable[str]):
        self.field = field
        self.available: List[str] = [str(k) for k in available]
        listed = ", ".join(self.available) if self.available else "none"
        super().__init__(f"Field '{field}' not found in data. Available fields: {listed}")
