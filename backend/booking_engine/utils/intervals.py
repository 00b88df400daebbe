# backend/booking_engine/utils/intervals.py
"""
Time interval helpers shared by every scheduling component.

All intervals are half-open: [start, end). Two intervals that only touch
(one ends exactly when the other starts) do not overlap.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional, Tuple, TypeVar

Comparable = TypeVar("Comparable", datetime, time, date)


def overlaps(a_start: Comparable, a_end: Comparable, b_start: Comparable, b_end: Comparable) -> bool:
    """True iff [a_start, a_end) and [b_start, b_end) share at least one instant."""
    return a_start < b_end and b_start < a_end


def contains(
    outer_start: Comparable, outer_end: Comparable, inner_start: Comparable, inner_end: Comparable
) -> bool:
    """True iff [inner_start, inner_end) lies entirely within [outer_start, outer_end)."""
    return outer_start <= inner_start and inner_end <= outer_end


def clamp_to_day(t: time, on_date: date, window_start: Optional[time] = None) -> datetime:
    """
    Attach a time-of-day to ``on_date``.

    When ``window_start`` is given and ``t`` is numerically before it, the
    window runs overnight and ``t`` belongs to the following day.
    """
    result = datetime.combine(on_date, t)
    if window_start is not None and t < window_start:
        result += timedelta(days=1)
    return result


def window_bounds(on_date: date, start: time, end: time) -> Tuple[datetime, datetime]:
    """Concrete [start, end) of a daily window on ``on_date``, wrapping past midnight."""
    return clamp_to_day(start, on_date), clamp_to_day(end, on_date, window_start=start)


def day_of_week_index(on_date: date) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""
    return (on_date.weekday() + 1) % 7


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


@dataclass(frozen=True)
class TimeRange:
    """An immutable half-open time range."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"TimeRange end {self.end} must be after start {self.start}")

    def __str__(self) -> str:
        return f"{self.start.strftime('%Y-%m-%d %H:%M')} - {self.end.strftime('%H:%M')}"

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start, self.end)

    def overlaps(self, other: "TimeRange") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other: "TimeRange") -> bool:
        return contains(self.start, self.end, other.start, other.end)

    def contains_point(self, moment: datetime) -> bool:
        return self.start <= moment < self.end
