import calendar
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Optional

TRANSACTIONS = "transactions"


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _sub_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def default_range(now: Optional[datetime] = None) -> DateRange:
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    start = datetime.combine(_sub_months(now, 1).date(), time.min)
    end = datetime.combine(now.date(), time.max)
    return DateRange(start, end)


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def resolve_range(
    start: Optional[str],
    end: Optional[str],
    *,
    now: Optional[datetime] = None,
    required: bool = False,
) -> DateRange:
    if not start and not end and not required:
        return default_range(now)
    if not start or not end:
        raise ValueError("Date range must be fully specified")
    date_range = DateRange(parse_timestamp(start), parse_timestamp(end))
    if date_range.start > date_range.end:
        raise ValueError("Start date must be before end date")
    return date_range


def transactions_range_key(date_range: DateRange) -> tuple[str, str, str]:
    return (TRANSACTIONS, date_range.start.isoformat(), date_range.end.isoformat())


def display_text(date_range: Optional[DateRange]) -> str:
    def fmt(moment: Optional[datetime], fallback: str) -> str:
        if moment is None:
            return fallback
        return f"{moment:%b} {moment.day}, {moment.year}"

    start = date_range.start if date_range else None
    end = date_range.end if date_range else None
    return f"{fmt(start, 'Start date')} — {fmt(end, 'End date')}"
