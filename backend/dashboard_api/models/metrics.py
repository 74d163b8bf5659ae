from dataclasses import dataclass, field
from datetime import date
import enum


class TimeFrame(str, enum.Enum):
    daily = "Daily"
    weekly = "Weekly"
    monthly = "Monthly"
    yearly = "Yearly"


class SeriesType(str, enum.Enum):
    sessions = "sessions"
    leads = "leads"
    clients = "clients"
    conversions = "conversions"


class FunnelVariant(str, enum.Enum):
    session_to_lead = "session_to_lead"
    lead_to_client = "lead_to_client"


# Series that are fetched from the analytics backend; conversions are derived.
FETCHABLE_SERIES = (SeriesType.sessions, SeriesType.leads, SeriesType.clients)
METRIC_FIELDS = ("leads", "clients", "sessions", "conversions")


@dataclass(frozen=True)
class RawDataPoint:
    date: str
    count: int
    type: str


@dataclass(frozen=True)
class DateRange:
    start: date | None = None
    end: date | None = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


@dataclass
class DailyBucket:
    period: str
    leads: int = 0
    clients: int = 0
    sessions: int = 0
    conversions: int = 0

    @property
    def day(self) -> date:
        return date.fromisoformat(self.period)

    def add(self, series: str, count: int) -> bool:
        if series not in METRIC_FIELDS:
            return False
        setattr(self, series, getattr(self, series) + count)
        return True


@dataclass
class GroupedBucket:
    period: str
    anchor: date
    start_date: date
    end_date: date
    leads: int = 0
    clients: int = 0
    sessions: int = 0
    conversions: int = 0


@dataclass
class PeriodRecord:
    """A bucket ready for output: display label plus the date it sorts by."""

    period: str
    sort_key: date
    leads: int = 0
    clients: int = 0
    sessions: int = 0
    conversions: int = 0

    def as_output(self) -> dict[str, int | str]:
        return {
            "period": self.period,
            "leads": self.leads,
            "clients": self.clients,
            "sessions": self.sessions,
            "conversions": self.conversions,
        }


@dataclass
class SummaryTotals:
    sessions: int = 0
    leads: int = 0
    clients: int = 0
    conversions: int = 0


@dataclass
class PipelineResult:
    records: list[PeriodRecord] = field(default_factory=list)
    summary: SummaryTotals = field(default_factory=SummaryTotals)
    errors: list[str] = field(default_factory=list)
    variant: FunnelVariant | None = None
    phases: list[str] = field(default_factory=list)
