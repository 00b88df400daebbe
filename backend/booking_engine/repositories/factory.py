# backend/booking_engine/repositories/factory.py
"""
Repository Factory for the booking engine

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .amenity_repository import AmenityRepository
    from .availability_window_repository import AvailabilityWindowRepository
    from .booking_repository import BookingRepository
    from .capacity_slot_repository import CapacitySlotRepository
    from .service_repository import ServiceRepository
    from .venue_window_repository import VenueWindowRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Services take optional repositories in their constructors and fall back
    to this factory, so tests can pass mocks for any single seam.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_capacity_slot_repository(db: Session) -> "CapacitySlotRepository":
        """Create repository for capacity counters."""
        from .capacity_slot_repository import CapacitySlotRepository

        return CapacitySlotRepository(db)

    @staticmethod
    def create_availability_window_repository(db: Session) -> "AvailabilityWindowRepository":
        """Create repository for service windows and exceptions."""
        from .availability_window_repository import AvailabilityWindowRepository

        return AvailabilityWindowRepository(db)

    @staticmethod
    def create_venue_window_repository(db: Session) -> "VenueWindowRepository":
        from .venue_window_repository import VenueWindowRepository

        return VenueWindowRepository(db)

    @staticmethod
    def create_amenity_repository(db: Session) -> "AmenityRepository":
        from .amenity_repository import AmenityRepository

        return AmenityRepository(db)

    @staticmethod
    def create_service_repository(db: Session) -> "ServiceRepository":
        """Create repository for service configuration reads."""
        from .service_repository import ServiceRepository

        return ServiceRepository(db)
