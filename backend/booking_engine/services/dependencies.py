# backend/booking_engine/services/dependencies.py
"""
Service layer dependencies for dependency injection.

Factory functions for FastAPI ``Depends`` that build each service with its
session and the shared cache. The cache is a process-wide singleton so the
in-memory fallback and its tag index are shared across requests.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .availability_window_service import AvailabilityWindowService
from .cache_service import CacheService
from .capacity_service import CapacityService
from .time_slot_service import TimeSlotService
from .venue_amenity_service import VenueAmenityService
from .venue_availability_service import VenueAvailabilityService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_cache_service_singleton() -> CacheService:
    """Get singleton cache service instance."""
    logger.info("Creating shared CacheService")
    return CacheService()


def get_cache_service() -> CacheService:
    """Get cache service instance for dependency injection."""
    return get_cache_service_singleton()


def get_capacity_service(
    db: Session = Depends(get_db), cache: CacheService = Depends(get_cache_service)
) -> CapacityService:
    return CapacityService(db, cache)


def get_time_slot_service(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache_service),
    capacity_service: CapacityService = Depends(get_capacity_service),
) -> TimeSlotService:
    """
    Get TimeSlotService with the request's capacity service.

    Args:
        db: Database session
        cache: Shared cache service
        capacity_service: Capacity tracker bound to the same session

    Returns:
        TimeSlotService instance
    """
    return TimeSlotService(db, cache, capacity_service=capacity_service)


def get_availability_window_service(
    db: Session = Depends(get_db), cache: CacheService = Depends(get_cache_service)
) -> AvailabilityWindowService:
    return AvailabilityWindowService(db, cache)


def get_venue_availability_service(
    db: Session = Depends(get_db), cache: CacheService = Depends(get_cache_service)
) -> VenueAvailabilityService:
    return VenueAvailabilityService(db, cache)


def get_venue_amenity_service(
    db: Session = Depends(get_db), cache: CacheService = Depends(get_cache_service)
) -> VenueAmenityService:
    return VenueAmenityService(db, cache)
