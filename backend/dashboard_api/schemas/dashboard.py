from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dashboard_api.models.metrics import TimeFrame


class RawDataPointIn(BaseModel):
    # date stays a plain string; unparseable values are dropped during bucketing.
    date: str
    count: int = Field(ge=0)
    type: str


class DateRangeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str | None = Field(default=None, alias="from")
    to: str | None = None


class ProcessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: list[RawDataPointIn] = Field(default_factory=list)
    time_frame: TimeFrame = Field(default=TimeFrame.daily, alias="timeFrame")
    date_range: DateRangeIn | None = Field(default=None, alias="dateRange")


class OutputRecord(BaseModel):
    period: str
    leads: int
    clients: int
    sessions: int
    conversions: int


class DashboardSummary(BaseModel):
    sessions: int
    leads: int
    clients: int
    conversions: int


class DashboardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: list[OutputRecord]
    time_frame: TimeFrame = Field(alias="timeFrame")
    card_type: str | None = Field(default=None, alias="cardType")
    summary: DashboardSummary
    errors: list[str] | None = None
    debug: dict[str, Any] | None = None


class SummaryResponse(BaseModel):
    summary: DashboardSummary
    variant: str | None = None
    errors: list[str] | None = None


class ErrorResponse(BaseModel):
    error: str
    data: list[Any] = Field(default_factory=list)
