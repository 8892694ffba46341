from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional

from models import RecurrenceInterval
from periods import add_months, month_index

DAY_STEPS = {
    RecurrenceInterval.daily: 1,
    RecurrenceInterval.weekly: 7,
}

MONTH_STEPS = {
    RecurrenceInterval.monthly: 1,
    RecurrenceInterval.quarterly: 3,
    RecurrenceInterval.yearly: 12,
}


def occurrence_at(
    anchor_date: date, interval: RecurrenceInterval, index: int
) -> date:
    """The ``index``-th occurrence of a rule anchored at ``anchor_date``.

    Calendar steps are always taken from the anchor, so a rule anchored on the
    31st lands on the last day of short months and returns to the 31st
    afterwards instead of drifting to the 28th.
    """
    if interval in DAY_STEPS:
        return anchor_date + timedelta(days=DAY_STEPS[interval] * index)
    return add_months(
        anchor_date, MONTH_STEPS[interval] * index, desired_day=anchor_date.day
    )


def _occurrence_within_calendar(
    anchor_date: date, interval: RecurrenceInterval, index: int
) -> Optional[date]:
    # None once the step runs past date.max.
    try:
        return occurrence_at(anchor_date, interval, index)
    except (OverflowError, ValueError):
        return None


def _first_index_on_or_after(
    anchor_date: date, interval: RecurrenceInterval, target: date
) -> int:
    if target <= anchor_date:
        return 0
    if interval in DAY_STEPS:
        step = DAY_STEPS[interval]
        return -(-(target - anchor_date).days // step)
    step = MONTH_STEPS[interval]
    # Start one step early; snapping can put an occurrence before the target.
    index = max(0, (month_index(target) - month_index(anchor_date)) // step - 1)
    while True:
        current = _occurrence_within_calendar(anchor_date, interval, index)
        if current is None or current >= target:
            return index
        index += 1


@dataclass(frozen=True)
class Occurrences:
    """Occurrence dates of one record inside a closed window.

    Iterating again starts over from the first occurrence in the window.
    """

    anchor_date: date
    interval: Optional[RecurrenceInterval]
    recurrence_end: Optional[date]
    window_start: date
    window_end: date

    def __iter__(self) -> Iterator[date]:
        if self.interval is None:
            if self.window_start <= self.anchor_date <= self.window_end:
                yield self.anchor_date
            return

        limit = self.window_end
        if self.recurrence_end is not None and self.recurrence_end < limit:
            limit = self.recurrence_end

        # Occurrences before the window are stepped over, not counted.
        index = _first_index_on_or_after(
            self.anchor_date, self.interval, self.window_start
        )
        current = _occurrence_within_calendar(self.anchor_date, self.interval, index)
        while current is not None and current <= limit:
            yield current
            index += 1
            current = _occurrence_within_calendar(
                self.anchor_date, self.interval, index
            )

    def count(self) -> int:
        return sum(1 for _ in self)


def expand_occurrences(
    anchor_date: date,
    interval: Optional[RecurrenceInterval],
    recurrence_end: Optional[date],
    window_start: date,
    window_end: date,
) -> Occurrences:
    return Occurrences(
        anchor_date=anchor_date,
        interval=interval,
        recurrence_end=recurrence_end,
        window_start=window_start,
        window_end=window_end,
    )
