from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


class YFieldModel(BaseModel):
    field: str
    type: str = "bar"
    unit: Optional[str] = None


class FilterAxisModel(BaseModel):
    options: List[str] = Field(default_factory=list)
    param_name: str = ""
    server_side: bool = False


class ChartConfigModel(BaseModel):
    chart_id: str = "chart"
    title: str = ""
    chart_type: str = "bar"
    endpoint: str = ""
    api_key: Optional[str] = None
    x_axis: str
    y_axis: Union[str, List[Union[str, YFieldModel]]]
    group_by: Optional[str] = None
    filters: Dict[str, FilterAxisModel] = Field(default_factory=dict)
    policy: str = "max"
    colors: Dict[str, str] = Field(default_factory=dict)
    strip_suffixes: bool = True


class BrushModel(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class ChartViewRequest(BaseModel):
    chart: ChartConfigModel
    filters: Dict[str, str] = Field(default_factory=dict)
    brush: Optional[BrushModel] = None
    refresh: bool = False


class TimeWindowModel(BaseModel):
    key: str
    label: str
    granularity: Optional[str] = None


class TimeWindowsResponse(BaseModel):
    time_windows: List[TimeWindowModel]
