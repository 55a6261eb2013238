from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Literal, Mapping, Optional, Tuple

from core.errors import FieldNotFound

Role = Literal["x", "y", "group"]
DisplayType = Literal["bar", "line"]


@dataclass(frozen=True)
class FieldSpec:
    key: str
    role: Role = "y"
    display_type: DisplayType = "bar"
    unit: Optional[str] = None


@dataclass(frozen=True)
class ChartFields:
    x: FieldSpec
    y: Tuple[FieldSpec, ...] = field(default_factory=tuple)
    group: Optional[FieldSpec] = None

    @property
    def y_keys(self) -> List[str]:
        return [spec.key for spec in self.y]

    def describe(self) -> str:
        """Canonical description of the field mapping, used in dataset cache keys."""
        return json.dumps(
            {
                "xAxis": self.x.key,
                "yAxis": [{"field": s.key, "type": s.display_type, "unit": s.unit} for s in self.y],
                "groupBy": self.group.key if self.group else None,
            },
            sort_keys=True,
        )

    def unit_for(self, key: str) -> Optional[str]:
        for spec in self.y:
            if spec.key == key:
                return spec.unit
        return self.y[0].unit if self.y else None


def _y_spec(entry: Any) -> Optional[FieldSpec]:
    if isinstance(entry, FieldSpec):
        return entry
    if isinstance(entry, str):
        return FieldSpec(key=entry, role="y") if entry.strip() else None
    if isinstance(entry, Mapping):
        key = entry.get("field") or entry.get("key")
        if not key:
            return None
        display = str(entry.get("type") or entry.get("display_type") or "bar").lower()
        return FieldSpec(
            key=str(key),
            role="y",
            display_type="line" if display == "line" else "bar",
            unit=entry.get("unit") or None,
        )
    return None


def chart_fields(x_axis: str, y_axis: Any, group_by: Optional[str] = None) -> ChartFields:
    """Build a ChartFields from a loose mapping: y may be a key, a list of keys, or a list of {field, type, unit}."""
    entries: Iterable[Any] = y_axis if isinstance(y_axis, (list, tuple)) else [y_axis]
    y_specs = tuple(spec for spec in (_y_spec(e) for e in entries) if spec is not None)
    group = FieldSpec(key=group_by, role="group") if group_by else None
    return ChartFields(x=FieldSpec(key=x_axis, role="x"), y=y_specs, group=group)


def find_field(record: Mapping[str, Any], name: str) -> Optional[str]:
    if name in record:
        return name

    lowered = name.lower()
    keys = [str(k) for k in record.keys()]
    for key in keys:
        if key.lower() == lowered:
            return key

    space_to_underscore = lowered.replace(" ", "_")
    underscore_to_space = lowered.replace("_", " ")
    for key in keys:
        key_lower = key.lower()
        if key_lower == space_to_underscore or key_lower == underscore_to_space:
            return key
    return None


def resolve_field(record: Mapping[str, Any], name: str) -> str:
    """Return the key present in `record` for the logical field `name` or raise FieldNotFound."""
    key = find_field(record, name)
    if key is None:
        raise FieldNotFound(name, record.keys())
    return key


@dataclass(frozen=True)
class ResolvedFields:
    x: str
    y: Tuple[str, ...]
    group: Optional[str] = None
    # logical y key -> actual row key
    y_map: Tuple[Tuple[str, str], ...] = ()

    def actual_y(self, logical: str) -> str:
        return dict(self.y_map).get(logical, logical)


def resolve_fields(record: Mapping[str, Any], fields: ChartFields) -> ResolvedFields:
    x = resolve_field(record, fields.x.key)
    pairs = [(spec.key, resolve_field(record, spec.key)) for spec in fields.y]
    group = resolve_field(record, fields.group.key) if fields.group else None
    return ResolvedFields(x=x, y=tuple(actual for _, actual in pairs), group=group, y_map=tuple(pairs))
