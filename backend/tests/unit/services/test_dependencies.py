# backend/tests/unit/services/test_dependencies.py
"""FastAPI dependency providers wire services to the shared cache."""

from booking_engine.services.capacity_service import CapacityService
from booking_engine.services.dependencies import (
    get_availability_window_service,
    get_cache_service,
    get_capacity_service,
    get_time_slot_service,
    get_venue_amenity_service,
    get_venue_availability_service,
)
from booking_engine.services.time_slot_service import TimeSlotService
from booking_engine.services.venue_amenity_service import VenueAmenityService
from booking_engine.services.venue_availability_service import VenueAvailabilityService


class TestServiceDependencies:
    def test_cache_is_a_process_wide_singleton(self):
        assert get_cache_service() is get_cache_service()

    def test_time_slot_service_shares_the_request_capacity_service(self, unit_db, cache):
        capacity = get_capacity_service(db=unit_db, cache=cache)
        service = get_time_slot_service(db=unit_db, cache=cache, capacity_service=capacity)

        assert isinstance(capacity, CapacityService)
        assert isinstance(service, TimeSlotService)
        assert service.capacity_service is capacity
        assert service.db is unit_db

    def test_venue_services(self, unit_db, cache):
        assert isinstance(get_venue_availability_service(db=unit_db, cache=cache), VenueAvailabilityService)
        assert isinstance(get_venue_amenity_service(db=unit_db, cache=cache), VenueAmenityService)
        assert get_availability_window_service(db=unit_db, cache=cache).cache is cache
