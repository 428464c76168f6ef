from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError


class PeriodKind(str, Enum):
    week = "week"
    month = "month"
    year = "year"


MONTH_BUCKET_LABELS = ("Sem 1", "Sem 2", "Sem 3", "Sem 4")
YEAR_BUCKET_LABELS = (
    "Ene",
    "Feb",
    "Mar",
    "Abr",
    "May",
    "Jun",
    "Jul",
    "Ago",
    "Sep",
    "Oct",
    "Nov",
    "Dic",
)


@dataclass(frozen=True)
class Period:
    kind: PeriodKind
    start: datetime
    end: datetime
    labels: tuple[str, ...]

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start <= moment < self.end


def local_now() -> datetime:
    """Current wall-clock time in the configured timezone, as a naive datetime."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def parse_instant(value: object) -> Optional[datetime]:
    """Parse a stored timestamp into a naive local datetime.

    Aware values are converted to the configured timezone first. Anything that
    is not a usable ISO-8601 string yields ``None`` so callers can exclude it.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        tz = ZoneInfo(get_settings().timezone)
        parsed = parsed.astimezone(tz).replace(tzinfo=None)
    return parsed


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def start_of_month(moment: datetime) -> datetime:
    return datetime.combine(moment.date().replace(day=1), time.min)


def _next_month(moment: datetime) -> datetime:
    first = start_of_month(moment)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def coerce_kind(period: object) -> PeriodKind:
    try:
        return PeriodKind(period)
    except ValueError as exc:
        raise ValidationError(f"Unknown period: {period!r}") from exc


def period_window(period: object, reference: datetime) -> Period:
    kind = coerce_kind(period)
    if kind == PeriodKind.week:
        start = start_of_day(reference) - timedelta(days=6)
        end = start_of_day(reference) + timedelta(days=1)
        labels = tuple(str((start + timedelta(days=i)).day) for i in range(7))
    elif kind == PeriodKind.month:
        start = start_of_month(reference)
        end = _next_month(reference)
        labels = MONTH_BUCKET_LABELS
    else:
        start = datetime(reference.year, 1, 1)
        end = datetime(reference.year + 1, 1, 1)
        labels = YEAR_BUCKET_LABELS
    return Period(kind, start, end, labels)


def buckets_for(period: object, reference: datetime) -> tuple[datetime, tuple[str, ...]]:
    window = period_window(period, reference)
    return window.start, window.labels


def classify(period: object, moment: datetime) -> str:
    kind = coerce_kind(period)
    if kind == PeriodKind.week:
        return str(moment.day)
    if kind == PeriodKind.month:
        # Days 22 to the end of the month all land in the fourth bucket.
        return MONTH_BUCKET_LABELS[min(moment.day - 1, 21) // 7]
    return YEAR_BUCKET_LABELS[moment.month - 1]
