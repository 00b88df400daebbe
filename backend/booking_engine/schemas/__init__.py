# backend/booking_engine/schemas/__init__.py
"""
Pydantic schemas for the booking engine.

Request models validate on write (window configuration, amenity type rules);
response models are what services return and what the slot cache stores.
"""

from .amenity import (
    AmenityAvailability,
    AmenityCreate,
    AmenityMatch,
    AmenityPricing,
    AmenityRead,
    AmenityRequirement,
    AmenityUpdate,
    AvailabilityUpdate,
    BulkUpdateResult,
    DayAvailability,
    EquipmentSpecifications,
    FurnitureSpecifications,
    MatchResult,
    NoticeSummary,
)
from .availability import (
    AvailabilityExceptionCreate,
    AvailableSlot,
    CapacityStats,
    PackageSlot,
    PriceModifier,
    ServiceWindowCreate,
    ServiceWindowUpdate,
    SlotQueryOptions,
)
from .venue import (
    AvailabilityCalendar,
    BookingImpact,
    BookingImpactReport,
    BookingResolution,
    CalendarDay,
    CalendarSummary,
    VenueSlot,
    VenueWindowCreate,
    VenueWindowUpdate,
    WindowChangeResult,
    WindowConflict,
    WindowConflictsReport,
    WindowDeletionResult,
    WindowUsageStats,
)

__all__ = [
    "AmenityAvailability",
    "AmenityCreate",
    "AmenityMatch",
    "AmenityPricing",
    "AmenityRead",
    "AmenityRequirement",
    "AmenityUpdate",
    "AvailabilityCalendar",
    "AvailabilityExceptionCreate",
    "AvailabilityUpdate",
    "AvailableSlot",
    "BookingImpact",
    "BookingImpactReport",
    "BookingResolution",
    "BulkUpdateResult",
    "CalendarDay",
    "CalendarSummary",
    "CapacityStats",
    "DayAvailability",
    "EquipmentSpecifications",
    "FurnitureSpecifications",
    "MatchResult",
    "NoticeSummary",
    "PackageSlot",
    "PriceModifier",
    "ServiceWindowCreate",
    "ServiceWindowUpdate",
    "SlotQueryOptions",
    "VenueSlot",
    "VenueWindowCreate",
    "VenueWindowUpdate",
    "WindowChangeResult",
    "WindowConflict",
    "WindowConflictsReport",
    "WindowDeletionResult",
    "WindowUsageStats",
]
