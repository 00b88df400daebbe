"""
Database models for the booking engine.

The models are organized by functionality:
- Service configuration (services, locations, packages)
- Bookings consumed by the engine
- Service availability windows and per-date exceptions
- Capacity slots
- Venue windows and amenities
"""

from .availability_window import ServiceAvailabilityException, ServiceAvailabilityWindow
from .booking import Booking
from .capacity_slot import CapacitySlot
from .service import Service, ServiceLocation, ServicePackage
from .venue import VenueAmenity, VenueAvailabilityWindow

__all__ = [
    "Booking",
    "CapacitySlot",
    "Service",
    "ServiceAvailabilityException",
    "ServiceAvailabilityWindow",
    "ServiceLocation",
    "ServicePackage",
    "VenueAmenity",
    "VenueAvailabilityWindow",
]
