# backend/booking_engine/core/enums.py
"""
Enumerations shared by models, schemas and services.

All enums subclass ``str`` so they compare equal to their stored column values.
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


# Statuses counted against a service window's max_bookings
CAPACITY_CONSUMING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value)

# Statuses that make a service slot unavailable when they overlap it
SLOT_EXCLUDED_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.NO_SHOW.value)

# Future bookings that depend on a venue window or amenity
ACTIVE_FUTURE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class WindowPattern(str, Enum):
    WEEKLY = "weekly"
    DAILY = "daily"
    SPECIFIC_DATE = "specific_date"
    DATE_RANGE = "date_range"


class ExceptionType(str, Enum):
    BLOCKED = "blocked"
    CUSTOM_HOURS = "custom_hours"
    SPECIAL_PRICING = "special_pricing"


class PriceModifierType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class VenueWindowType(str, Enum):
    REGULAR = "regular"
    SPECIAL_EVENT = "special_event"
    MAINTENANCE = "maintenance"
    SEASONAL = "seasonal"


class AmenityType(str, Enum):
    EQUIPMENT = "equipment"
    FURNITURE = "furniture"
    INFRASTRUCTURE = "infrastructure"
    SERVICE = "service"
    RESTRICTION = "restriction"


class CapacityStatus(str, Enum):
    BLOCKED = "blocked"
    FULL = "full"
    AVAILABLE = "available"
    PARTIAL = "partial"


class ConflictSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImpactAction(str, Enum):
    NONE = "none"
    AUTO_RESCHEDULE = "auto_reschedule"
    MANUAL_REVIEW = "manual_review"
    CANCEL_BOOKING = "cancel_booking"


class MatchQuality(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"
