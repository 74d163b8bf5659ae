from dashboard_api.models.metrics import (
    DailyBucket,
    DateRange,
    FunnelVariant,
    GroupedBucket,
    PeriodRecord,
    PipelineResult,
    RawDataPoint,
    SeriesType,
    SummaryTotals,
    TimeFrame,
)

__all__ = [
    "DailyBucket",
    "DateRange",
    "FunnelVariant",
    "GroupedBucket",
    "PeriodRecord",
    "PipelineResult",
    "RawDataPoint",
    "SeriesType",
    "SummaryTotals",
    "TimeFrame",
]
