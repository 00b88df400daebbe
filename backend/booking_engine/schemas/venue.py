# backend/booking_engine/schemas/venue.py
"""
Venue availability schemas.

Write models validate venue window configuration; the rest describe the
slot listings, calendars and conflict/impact reports produced by the venue
services.
"""

from dataclasses import dataclass, field
import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import ConflictSeverity, ImpactAction, VenueWindowType
from ._strict_base import StrictModel, StrictRequestModel

DateType = datetime.date
TimeType = datetime.time
DateTimeType = datetime.datetime


def _check_day_of_week(v: Optional[int]) -> Optional[int]:
    if v is not None and not 0 <= v <= 6:
        raise ValueError("Day of week must be between 0 (Sunday) and 6 (Saturday)")
    return v


class VenueWindowCreate(StrictRequestModel):
    """A complete venue window definition."""

    service_location_id: str
    window_type: VenueWindowType = VenueWindowType.REGULAR
    day_of_week: Optional[int] = None
    specific_date: Optional[DateType] = None
    date_range_start: Optional[DateType] = None
    date_range_end: Optional[DateType] = None
    earliest_access: Optional[TimeType] = None
    latest_departure: Optional[TimeType] = None
    quiet_hours_start: Optional[TimeType] = None
    quiet_hours_end: Optional[TimeType] = None
    max_concurrent_events: int = 1
    min_advance_booking_hours: Optional[int] = Field(default=None, ge=0)
    max_advance_booking_days: Optional[int] = Field(default=None, ge=0)
    restrictions: Optional[List[str]] = None
    notes: Optional[str] = None
    is_active: bool = True

    @field_validator("max_concurrent_events")
    @classmethod
    def validate_max_concurrent_events(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Maximum concurrent events must be at least 1")
        return v

    @field_validator("day_of_week")
    @classmethod
    def validate_day_of_week(cls, v: Optional[int]) -> Optional[int]:
        return _check_day_of_week(v)

    @model_validator(mode="after")
    def validate_time_rules(self) -> "VenueWindowCreate":
        if self.earliest_access is not None and self.latest_departure is not None:
            if self.earliest_access >= self.latest_departure:
                raise ValueError("Earliest access time must be before latest departure time")
        if self.quiet_hours_start is not None and self.quiet_hours_end is not None:
            if self.quiet_hours_start >= self.quiet_hours_end:
                raise ValueError("Quiet hours start must be before quiet hours end")
        if (self.date_range_start is None) != (self.date_range_end is None):
            raise ValueError("Date ranges need both date_range_start and date_range_end")
        if self.date_range_start is not None and self.date_range_end is not None:
            if self.date_range_start >= self.date_range_end:
                raise ValueError("Date range start must be before date range end")
        if self.day_of_week is None and self.specific_date is None and self.date_range_start is None:
            raise ValueError("A venue window needs a day_of_week, specific_date or date range")
        return self


class VenueWindowUpdate(StrictRequestModel):
    """
    Partial update of a venue window.

    Only the fields that are set are applied; the merged result is validated
    as a whole by the service before anything is written.
    """

    window_type: Optional[VenueWindowType] = None
    day_of_week: Optional[int] = None
    specific_date: Optional[DateType] = None
    date_range_start: Optional[DateType] = None
    date_range_end: Optional[DateType] = None
    earliest_access: Optional[TimeType] = None
    latest_departure: Optional[TimeType] = None
    quiet_hours_start: Optional[TimeType] = None
    quiet_hours_end: Optional[TimeType] = None
    max_concurrent_events: Optional[int] = None
    min_advance_booking_hours: Optional[int] = Field(default=None, ge=0)
    max_advance_booking_days: Optional[int] = Field(default=None, ge=0)
    restrictions: Optional[List[str]] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day_of_week(cls, v: Optional[int]) -> Optional[int]:
        return _check_day_of_week(v)


# Slots and calendar


class VenueSlot(StrictModel):
    start_time: DateTimeType
    end_time: DateTimeType
    duration_minutes: int
    window_id: str
    window_type: VenueWindowType
    restrictions: List[str] = Field(default_factory=list)


class CalendarSlot(StrictModel):
    start_time: str  # HH:MM
    end_time: str
    duration_minutes: int


class CalendarDay(StrictModel):
    date: DateType
    day_name: str
    is_available: bool
    available_slots: List[CalendarSlot]
    total_slots: int
    restrictions: List[str]
    notes: List[str]


class CalendarSummary(StrictModel):
    total_days: int
    available_days: int
    availability_rate: float
    total_available_slots: int
    average_slots_per_day: float


class AvailabilityCalendar(StrictModel):
    location_id: str
    start_date: DateType
    end_date: DateType
    event_duration_minutes: int
    calendar: Dict[str, CalendarDay]
    summary: CalendarSummary


# Conflicts and impact


class WindowConflict(StrictModel):
    """Another active window that overlaps the one being written."""

    window_id: str
    window_type: VenueWindowType
    overlap_type: str  # time_overlap | date_overlap
    severity: ConflictSeverity
    details: Dict[str, Any] = Field(default_factory=dict)


class BookingImpact(StrictModel):
    booking_id: str
    booking_reference: Optional[str] = None
    scheduled_at: DateTimeType
    ends_at: DateTimeType
    status: str
    impact_type: str  # time_restriction | quiet_hours | availability_removed
    severity: ConflictSeverity
    recommended_action: ImpactAction
    details: List[str] = Field(default_factory=list)


class BookingImpactReport(StrictModel):
    has_conflicts: bool = False
    affected_bookings: List[BookingImpact] = Field(default_factory=list)
    total_affected: int = 0
    high_impact_count: int = 0

    @classmethod
    def from_impacts(cls, impacts: List[BookingImpact]) -> "BookingImpactReport":
        high = sum(1 for impact in impacts if impact.severity == ConflictSeverity.HIGH)
        return cls(
            has_conflicts=high > 0,
            affected_bookings=impacts,
            total_affected=len(impacts),
            high_impact_count=high,
        )


class BookingResolution(StrictModel):
    """What handle_affected_bookings did to one booking."""

    booking_id: str
    requested_action: ImpactAction
    outcome: str  # rescheduled | flagged_for_review | cancelled | not_found
    new_start: Optional[DateTimeType] = None
    new_end: Optional[DateTimeType] = None
    reason: Optional[str] = None


class BookingWindowConflict(StrictModel):
    booking_id: str
    booking_reference: Optional[str] = None
    conflict_type: str  # time_restriction | quiet_hours
    severity: ConflictSeverity


class OverCapacityPeriod(StrictModel):
    start_time: DateTimeType
    end_time: DateTimeType
    concurrent_bookings: int
    max_allowed: int
    excess: int


class CapacityIssue(StrictModel):
    issue_type: str = "over_capacity"
    period: OverCapacityPeriod
    severity: ConflictSeverity = ConflictSeverity.HIGH


class WindowConflictsReport(StrictModel):
    scheduling_conflicts: List[WindowConflict] = Field(default_factory=list)
    booking_conflicts: List[BookingWindowConflict] = Field(default_factory=list)
    capacity_issues: List[CapacityIssue] = Field(default_factory=list)


class WindowRevenue(StrictModel):
    total_revenue: int
    booking_count: int
    average_booking_value: int


class UsageIssue(StrictModel):
    type: str
    count: int
    description: str


class WindowUsageStats(StrictModel):
    total_bookings: int
    utilization_rate: float
    average_event_duration: int
    peak_usage_times: Dict[str, int]
    revenue_generated: WindowRevenue
    common_issues: List[UsageIssue]


# Write results (carry the ORM row, so plain dataclasses)


@dataclass
class WindowChangeResult:
    window: Any
    conflicts: List[WindowConflict] = field(default_factory=list)
    impact: Optional[BookingImpactReport] = None
    resolutions: List[BookingResolution] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.conflicts) or bool(self.impact and self.impact.total_affected)


@dataclass
class WindowDeletionResult:
    window_id: str
    deleted: bool
    impact: BookingImpactReport
    resolutions: List[BookingResolution] = field(default_factory=list)
