from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import InvalidRequest

MONTHLY = "monthly"
YEARLY = "yearly"
YEARLY_BY_MONTH = "yearlyByMonth"
LAST_12_MONTHS = "last12months"
RANGE = "range"
ALL_TIME = "allTime"

SUMMARY_MODES = (MONTHLY, YEARLY, YEARLY_BY_MONTH, LAST_12_MONTHS, RANGE, ALL_TIME)

MIN_YEAR = 1970
MAX_YEAR = 3000


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_days(base: date, days: int) -> date:
    return base + timedelta(days=days)


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Move ``base`` by whole calendar months.

    The day of month is ``desired_day`` (``base.day`` when omitted), snapped to
    the last day of the target month when that month is shorter.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def month_index(d: date) -> int:
    return d.year * 12 + (d.month - 1)


def month_from_index(index: int) -> date:
    return date(index // 12, index % 12 + 1, 1)


def iter_months(first: date, last: date) -> Iterator[date]:
    """First day of every month from ``first`` through ``last`` inclusive."""
    for index in range(month_index(first), month_index(last) + 1):
        yield month_from_index(index)


def month_period(year: int, month: int) -> Period:
    start = date(year, month, 1)
    return Period(MONTHLY, start, month_end(start))


def year_period(year: int) -> Period:
    return Period(YEARLY, date(year, 1, 1), date(year, 12, 31))


def parse_year(value: Optional[str]) -> int:
    try:
        year = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"Invalid year: {value!r}") from exc
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidRequest(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
    return year


def parse_month(value: Optional[str]) -> int:
    try:
        month = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"Invalid month: {value!r}") from exc
    if not 1 <= month <= 12:
        raise InvalidRequest("Month must be between 1 and 12")
    return month


def _parse_iso(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise InvalidRequest(f"Invalid date: {value!r}") from exc


def parse_date(value: str) -> date:
    parsed = _parse_iso(value.strip())
    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        raise InvalidRequest(f"Date year must be between {MIN_YEAR} and {MAX_YEAR}")
    return parsed


def resolve_summary_periods(
    mode: Optional[str],
    *,
    year: Optional[str] = None,
    month: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    earliest: Optional[Callable[[], Optional[date]]] = None,
    today: Optional[date] = None,
) -> list[Period]:
    mode = mode or MONTHLY
    if mode == MONTHLY:
        if not year or not month:
            raise InvalidRequest("Year and month are required for monthly mode")
        return [month_period(parse_year(year), parse_month(month))]
    if mode == YEARLY:
        if not year:
            raise InvalidRequest("Year is required for yearly mode")
        return [year_period(parse_year(year))]
    if mode == YEARLY_BY_MONTH:
        if not year:
            raise InvalidRequest("Year is required for yearlyByMonth mode")
        parsed = parse_year(year)
        return [month_period(parsed, m) for m in range(1, 13)]
    if mode in (LAST_12_MONTHS, RANGE):
        if not start or not end:
            raise InvalidRequest(f"Start and end dates are required for {mode} mode")
        start_date = parse_date(start)
        end_date = parse_date(end)
        if start_date > end_date:
            raise InvalidRequest("Start date must be before end date")
        return [Period(mode, start_date, end_date)]
    if mode == ALL_TIME:
        today = today or local_today()
        first = earliest() if earliest else None
        # No records: the window collapses to today.
        if first is None or first > today:
            first = today
        return [Period(ALL_TIME, first, today)]
    raise InvalidRequest(f"Invalid mode: {mode}")
