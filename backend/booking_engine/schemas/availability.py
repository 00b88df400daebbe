# backend/booking_engine/schemas/availability.py
"""
Service availability schemas.

Request models validate window configuration on write; response models are
what the slot engines return (and what is cached, as JSON).
"""

import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import ExceptionType, PriceModifierType, WindowPattern
from ._strict_base import StrictModel, StrictRequestModel

DateType = datetime.date
TimeType = datetime.time
DateTimeType = datetime.datetime


class ServiceWindowBase(StrictRequestModel):
    """Fields shared by create and update requests."""

    service_location_id: Optional[str] = None
    title: Optional[str] = None
    pattern: WindowPattern = WindowPattern.WEEKLY
    day_of_week: Optional[int] = None
    specific_date: Optional[DateType] = None
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    start_time: TimeType
    end_time: TimeType
    max_bookings: int = 1
    slot_duration_minutes: int = 60
    break_duration_minutes: int = 0
    min_advance_booking_hours: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    price_modifier: int = 0
    price_modifier_type: PriceModifierType = PriceModifierType.FIXED
    is_active: bool = True
    is_bookable: bool = True

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_slot_duration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("slot_duration_minutes must be positive")
        return v

    @field_validator("break_duration_minutes")
    @classmethod
    def validate_break_duration(cls, v: int) -> int:
        if v < 0:
            raise ValueError("break_duration_minutes cannot be negative")
        return v

    @field_validator("max_bookings")
    @classmethod
    def validate_max_bookings(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_bookings must be at least 1")
        return v

    @field_validator("day_of_week")
    @classmethod
    def validate_day_of_week(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 <= v <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @model_validator(mode="after")
    def validate_pattern_dimension(self) -> "ServiceWindowBase":
        if self.start_time == self.end_time:
            raise ValueError("start_time and end_time must differ")
        if self.pattern == WindowPattern.WEEKLY and self.day_of_week is None:
            raise ValueError("weekly windows require day_of_week")
        if self.pattern == WindowPattern.SPECIFIC_DATE and self.specific_date is None:
            raise ValueError("specific_date windows require specific_date")
        if self.pattern == WindowPattern.DATE_RANGE:
            if self.start_date is None or self.end_date is None:
                raise ValueError("date_range windows require start_date and end_date")
            if self.start_date > self.end_date:
                raise ValueError("start_date must not be after end_date")
        return self


class ServiceWindowCreate(ServiceWindowBase):
    service_id: str


class ServiceWindowUpdate(StrictRequestModel):
    """Partial update; the service merges it over the stored row and re-validates."""

    service_location_id: Optional[str] = None
    title: Optional[str] = None
    pattern: Optional[WindowPattern] = None
    day_of_week: Optional[int] = None
    specific_date: Optional[DateType] = None
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    start_time: Optional[TimeType] = None
    end_time: Optional[TimeType] = None
    max_bookings: Optional[int] = None
    slot_duration_minutes: Optional[int] = None
    break_duration_minutes: Optional[int] = None
    min_advance_booking_hours: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    price_modifier: Optional[int] = None
    price_modifier_type: Optional[PriceModifierType] = None
    is_active: Optional[bool] = None
    is_bookable: Optional[bool] = None


class AvailabilityExceptionCreate(StrictRequestModel):
    service_id: str
    service_location_id: Optional[str] = None
    exception_date: DateType
    exception_type: ExceptionType
    start_time: Optional[TimeType] = None
    end_time: Optional[TimeType] = None
    price_modifier: Optional[int] = None
    price_modifier_type: Optional[PriceModifierType] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_type_fields(self) -> "AvailabilityExceptionCreate":
        if self.exception_type == ExceptionType.CUSTOM_HOURS:
            if self.start_time is None or self.end_time is None:
                raise ValueError("custom_hours exceptions require start_time and end_time")
            if self.start_time >= self.end_time:
                raise ValueError("custom hours start_time must be before end_time")
        if self.exception_type == ExceptionType.SPECIAL_PRICING and self.price_modifier is None:
            raise ValueError("special_pricing exceptions require price_modifier")
        return self


class PriceModifier(StrictModel):
    amount: int = 0
    type: PriceModifierType = PriceModifierType.FIXED
    reason: Optional[str] = None


class AvailableSlot(StrictModel):
    """A bookable slot returned by the service-level engine."""

    start_time: DateTimeType
    end_time: DateTimeType
    duration_minutes: int
    service_id: str
    location_id: Optional[str] = None
    window_id: Optional[str] = None
    max_capacity: int = 1
    current_bookings: int = 0
    price_modifier: PriceModifier = Field(default_factory=PriceModifier)
    price: Optional[int] = None


class SlotQueryOptions(StrictRequestModel):
    """Optional knobs for slot queries."""

    # Service whose advance-booking constraints apply (venue engine only)
    service_id: Optional[str] = None
    grid_minutes: Optional[int] = None
    # Service engine: let overlapping bookings share a slot up to max_bookings
    allow_shared_slots: bool = False
    # Venue engine: bookings to ignore (a booking being rescheduled)
    exclude_booking_ids: List[str] = Field(default_factory=list)
    use_cache: bool = True

    @field_validator("grid_minutes")
    @classmethod
    def validate_grid(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("grid_minutes must be positive")
        return v

    def cache_fingerprint(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"use_cache"})


class CapacityStats(StrictModel):
    total_slots: int
    total_capacity: int
    total_bookings: int
    total_blocked: int
    available_capacity: int
    utilization_rate: float
    fully_booked_slots: int
    blocked_slots: int


class PackageSlot(StrictModel):
    start_time: DateTimeType
    services: List[str]
