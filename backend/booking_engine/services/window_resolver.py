# backend/booking_engine/services/window_resolver.py
"""
Availability Window Resolver for the booking engine

Turns service availability windows into concrete slot candidates:
- Which windows apply on a date (weekly, daily, specific date, date range)
- How a window subdivides into slots (duration plus break stride)
- Whether a single slot is bookable (past, advance limits, max bookings)
- Window price modifiers

The module-level functions are pure and operate on anything shaped like a
ServiceAvailabilityWindow; WindowResolver adds the database lookup.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.enums import PriceModifierType, WindowPattern
from ..core.exceptions import ConfigurationError
from ..repositories import RepositoryFactory
from ..repositories.availability_window_repository import AvailabilityWindowRepository
from ..utils.intervals import day_of_week_index, minutes_between, window_bounds
from .base import BaseService

logger = logging.getLogger(__name__)

_PATTERNS = {pattern.value for pattern in WindowPattern}


@dataclass(frozen=True)
class SlotCandidate:
    """A slot produced by a window before any availability filtering."""

    start: datetime
    end: datetime
    window: Any

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start, self.end)


def window_applies_on(window: Any, on_date: date) -> bool:
    """Whether ``window``'s pattern includes ``on_date`` (ignores activity flags)."""
    pattern = window.pattern
    if pattern == WindowPattern.WEEKLY.value:
        return window.day_of_week == day_of_week_index(on_date)
    if pattern == WindowPattern.SPECIFIC_DATE.value:
        return window.specific_date == on_date
    if pattern == WindowPattern.DATE_RANGE.value:
        if window.start_date is None or window.end_date is None:
            return False
        return window.start_date <= on_date <= window.end_date
    if pattern == WindowPattern.DAILY.value:
        return True
    return False


def windows_applicable_on(windows: Iterable[Any], on_date: date) -> List[Any]:
    """Active, bookable windows whose pattern matches ``on_date``."""
    return [
        window
        for window in windows
        if window.is_active and window.is_bookable and window_applies_on(window, on_date)
    ]


def _check_durations(slot_minutes: Optional[int], break_minutes: Optional[int]) -> None:
    if slot_minutes is None or slot_minutes <= 0:
        raise ConfigurationError(
            f"Slot duration must be positive, got {slot_minutes}",
            field="slot_duration_minutes",
        )
    if break_minutes is not None and break_minutes < 0:
        raise ConfigurationError(
            f"Break duration cannot be negative, got {break_minutes}",
            field="break_duration_minutes",
        )


def generate_slots_for_window(
    window: Any,
    on_date: date,
    duration_minutes: Optional[int] = None,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
) -> List[SlotCandidate]:
    """
    Subdivide a window into slot candidates on ``on_date``.

    Args:
        window: Window providing times, slot and break durations
        on_date: Date the window starts on
        duration_minutes: Booked length of each slot (defaults to the window's slot
            duration); the stride always follows the window
        start_time: Replacement start time (custom hours exception)
        end_time: Replacement end time (custom hours exception)

    Returns:
        Candidates spaced ``slot_duration + break`` apart, each fully inside the window.
        An end time earlier than the start runs into the next day.

    Raises:
        ConfigurationError: Non-positive slot duration or negative break
    """
    break_minutes = window.break_duration_minutes or 0
    _check_durations(window.slot_duration_minutes, break_minutes)
    slot_minutes = duration_minutes if duration_minutes is not None else window.slot_duration_minutes
    _check_durations(slot_minutes, None)

    window_start, window_end = window_bounds(
        on_date,
        start_time if start_time is not None else window.start_time,
        end_time if end_time is not None else window.end_time,
    )
    slot_length = timedelta(minutes=slot_minutes)
    stride = timedelta(minutes=window.slot_duration_minutes + break_minutes)

    candidates: List[SlotCandidate] = []
    current = window_start
    while current + slot_length <= window_end:
        candidates.append(SlotCandidate(start=current, end=current + slot_length, window=window))
        current += stride
    return candidates


def max_slots_count(window: Any) -> int:
    """How many slots a window yields in one day."""
    slot_minutes = window.slot_duration_minutes
    break_minutes = window.break_duration_minutes or 0
    _check_durations(slot_minutes, break_minutes)
    # Any date works; only the wrapped length matters.
    start, end = window_bounds(date(2000, 1, 3), window.start_time, window.end_time)
    total = minutes_between(start, end)
    if total < slot_minutes:
        return 0
    return (total - slot_minutes) // (slot_minutes + break_minutes) + 1


def validate_window_config(data: Union[Mapping[str, Any], BaseModel, Any]) -> None:
    """
    Reject malformed window configuration before it is persisted.

    Accepts a mapping, a pydantic model or an ORM row.

    Raises:
        ConfigurationError: Describing the first problem found
    """
    if isinstance(data, BaseModel):
        values: Mapping[str, Any] = data.model_dump()
    elif isinstance(data, Mapping):
        values = data
    else:
        values = {
            name: getattr(data, name, None)
            for name in (
                "pattern",
                "day_of_week",
                "specific_date",
                "start_date",
                "end_date",
                "start_time",
                "end_time",
                "max_bookings",
                "slot_duration_minutes",
                "break_duration_minutes",
            )
        }

    pattern = values.get("pattern") or WindowPattern.WEEKLY.value
    pattern = getattr(pattern, "value", pattern)
    if pattern not in _PATTERNS:
        raise ConfigurationError(f"Unknown window pattern '{pattern}'", field="pattern")

    _check_durations(values.get("slot_duration_minutes", 60), values.get("break_duration_minutes", 0))

    start_time = values.get("start_time")
    end_time = values.get("end_time")
    if start_time is None or end_time is None:
        raise ConfigurationError("Windows require start_time and end_time", field="start_time")
    if start_time == end_time:
        raise ConfigurationError("Window start_time and end_time must differ", field="end_time")

    max_bookings = values.get("max_bookings", 1)
    if max_bookings is None or max_bookings < 1:
        raise ConfigurationError("max_bookings must be at least 1", field="max_bookings")

    day_of_week = values.get("day_of_week")
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ConfigurationError(
            f"day_of_week must be between 0 (Sunday) and 6 (Saturday), got {day_of_week}",
            field="day_of_week",
        )

    if pattern == WindowPattern.WEEKLY.value and day_of_week is None:
        raise ConfigurationError("Weekly windows require day_of_week", field="day_of_week")
    if pattern == WindowPattern.SPECIFIC_DATE.value and values.get("specific_date") is None:
        raise ConfigurationError("Specific-date windows require specific_date", field="specific_date")
    if pattern == WindowPattern.DATE_RANGE.value:
        start_date = values.get("start_date")
        end_date = values.get("end_date")
        if start_date is None or end_date is None:
            raise ConfigurationError(
                "Date-range windows require start_date and end_date", field="start_date"
            )
        if start_date > end_date:
            raise ConfigurationError("start_date must not be after end_date", field="end_date")


def is_slot_bookable(
    window: Any,
    slot_start: datetime,
    now: datetime,
    service: Any = None,
    current_bookings: int = 0,
) -> bool:
    """
    Apply the per-slot booking rules of a window.

    A slot is bookable when it starts after ``now``, respects the minimum
    notice (window override, else service, else none) and the maximum
    advance (window override, else service, else unlimited), and the window
    still has room for another booking.
    """
    if slot_start <= now:
        return False

    min_hours = window.min_advance_booking_hours
    if min_hours is None and service is not None:
        min_hours = service.min_advance_booking_hours
    if min_hours and slot_start < now + timedelta(hours=min_hours):
        return False

    max_days = window.max_advance_booking_days
    if max_days is None and service is not None:
        max_days = service.max_advance_booking_days
    if max_days is not None and slot_start > now + timedelta(days=max_days):
        return False

    return current_bookings < (window.max_bookings or 1)


def apply_price_modifier(base_price: int, amount: Optional[int], modifier_type: Optional[str]) -> int:
    """Percentage amounts are basis points; fixed amounts are minor units."""
    if not amount:
        return base_price
    if modifier_type == PriceModifierType.PERCENTAGE.value:
        return base_price + int(round(base_price * amount / 10000))
    return base_price + amount


def calculate_price_for_slot(window: Any, base_price: int) -> int:
    return apply_price_modifier(base_price, window.price_modifier, window.price_modifier_type)


class WindowResolver(BaseService):
    """Loads service windows and resolves which apply on a date."""

    def __init__(
        self,
        db: Session,
        window_repository: Optional[AvailabilityWindowRepository] = None,
    ):
        super().__init__(db)
        self.window_repository = (
            window_repository or RepositoryFactory.create_availability_window_repository(db)
        )

    def get_windows(self, service_id: str, location_id: Optional[str] = None) -> List[Any]:
        return self.window_repository.get_service_windows(service_id, location_id)

    def windows_applicable_on(
        self, service_id: str, location_id: Optional[str], on_date: date
    ) -> List[Any]:
        windows = self.get_windows(service_id, location_id)
        applicable = windows_applicable_on(windows, on_date)
        self.logger.debug(
            f"{len(applicable)} of {len(windows)} windows apply to service {service_id} on {on_date}"
        )
        return applicable
