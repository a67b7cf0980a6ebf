from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class PeriodSelector(str, Enum):
    current_month = "current_month"
    last_month = "last_month"
    last_30_days = "last_30_days"


class InvalidPeriod(ValueError):
    pass


@dataclass(frozen=True)
class PeriodWindow:
    """Inclusive ``[start, end]`` date range used to bound aggregation."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def anchor_month(self) -> date:
        return self.start.replace(day=1)


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone))


def month_end(d: date) -> date:
    first = d.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_window(anchor: date) -> PeriodWindow:
    return PeriodWindow(anchor.replace(day=1), month_end(anchor))


def previous_window(window: PeriodWindow) -> PeriodWindow:
    prev_end = window.start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=window.days - 1)
    return PeriodWindow(prev_start, prev_end)


def parse_period_selector(raw: Optional[str]) -> PeriodSelector:
    if not raw:
        return PeriodSelector.current_month
    try:
        return PeriodSelector(raw)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in PeriodSelector)
        raise InvalidPeriod(f"Unknown period '{raw}', expected one of: {allowed}") from exc


def resolve_period(
    period: PeriodSelector, *, today: Optional[date] = None
) -> PeriodWindow:
    today = today or local_now().date()
    if period == PeriodSelector.last_month:
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return PeriodWindow(last_month_end.replace(day=1), last_month_end)
    if period == PeriodSelector.last_30_days:
        return PeriodWindow(today - timedelta(days=30), today)

    # current month
    return month_window(today)
