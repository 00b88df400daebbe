# backend/booking_engine/repositories/__init__.py
"""
Repository layer for the booking engine.

Repositories own every query and flush, but never commit; services wrap
their writes in BaseService.transaction().

Usage:
    from booking_engine.repositories import RepositoryFactory

    repository = RepositoryFactory.create_capacity_slot_repository(db)
    slot = repository.find_or_create(service_id, location_id, slot_datetime)
"""

from .amenity_repository import AmenityRepository
from .availability_window_repository import AvailabilityWindowRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .capacity_slot_repository import CapacitySlotRepository, repair_capacity_counters
from .factory import RepositoryFactory
from .service_repository import ServiceRepository
from .venue_window_repository import VenueWindowRepository

__all__ = [
    "AmenityRepository",
    "AvailabilityWindowRepository",
    "BaseRepository",
    "BookingRepository",
    "CapacitySlotRepository",
    "RepositoryFactory",
    "ServiceRepository",
    "VenueWindowRepository",
    "repair_capacity_counters",
]
