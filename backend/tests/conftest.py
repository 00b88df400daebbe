# backend/tests/conftest.py
"""
Shared fixtures for the booking engine test-suite.

Unit tests run against one in-memory SQLite database shared by the whole
session. Each test gets a fresh Session and every table is emptied again
afterwards, so services are free to commit.
"""

from datetime import datetime, time
from typing import Any, Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from booking_engine.database import Base

# Import models so Base.metadata is populated for create_all.
import booking_engine.models  # noqa: F401
from booking_engine.models import (
    Booking,
    Service,
    ServiceAvailabilityWindow,
    ServiceLocation,
    VenueAmenity,
    VenueAvailabilityWindow,
)
from booking_engine.services.cache_service import CacheService

# Friday morning; everything scheduled in December 2023 onwards is "upcoming".
FROZEN_NOW = datetime(2023, 12, 1, 9, 0)


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Iterator[Session]:
    """Session bound to the shared in-memory engine; tables are emptied on teardown."""
    session = Session(bind=_unit_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture
def frozen_now() -> datetime:
    return FROZEN_NOW


@pytest.fixture
def clock(frozen_now) -> Callable[[], datetime]:
    return lambda: frozen_now


@pytest.fixture
def cache() -> CacheService:
    """In-memory cache (an empty URL never reaches for Redis)."""
    return CacheService(redis_url="")


# Factories


@pytest.fixture
def make_service(unit_db) -> Callable[..., Service]:
    def _make(**kwargs: Any) -> Service:
        kwargs.setdefault("name", "Photo session")
        service = Service(**kwargs)
        unit_db.add(service)
        unit_db.commit()
        return service

    return _make


@pytest.fixture
def make_location(unit_db) -> Callable[..., ServiceLocation]:
    def _make(**kwargs: Any) -> ServiceLocation:
        kwargs.setdefault("name", "Main hall")
        location = ServiceLocation(**kwargs)
        unit_db.add(location)
        unit_db.commit()
        return location

    return _make


@pytest.fixture
def make_booking(unit_db) -> Callable[..., Booking]:
    def _make(start: datetime, end: datetime, **kwargs: Any) -> Booking:
        booking = Booking(scheduled_at=start, ends_at=end, **kwargs)
        unit_db.add(booking)
        unit_db.commit()
        return booking

    return _make


@pytest.fixture
def make_service_window(unit_db) -> Callable[..., ServiceAvailabilityWindow]:
    def _make(service_id: str, **kwargs: Any) -> ServiceAvailabilityWindow:
        kwargs.setdefault("start_time", time(9, 0))
        kwargs.setdefault("end_time", time(17, 0))
        window = ServiceAvailabilityWindow(service_id=service_id, **kwargs)
        unit_db.add(window)
        unit_db.commit()
        return window

    return _make


@pytest.fixture
def make_venue_window(unit_db) -> Callable[..., VenueAvailabilityWindow]:
    def _make(location_id: str, **kwargs: Any) -> VenueAvailabilityWindow:
        kwargs.setdefault("earliest_access", time(9, 0))
        kwargs.setdefault("latest_departure", time(22, 0))
        window = VenueAvailabilityWindow(service_location_id=location_id, **kwargs)
        unit_db.add(window)
        unit_db.commit()
        return window

    return _make


@pytest.fixture
def make_amenity(unit_db) -> Callable[..., VenueAmenity]:
    def _make(location_id: str, **kwargs: Any) -> VenueAmenity:
        kwargs.setdefault("name", "Projector")
        amenity = VenueAmenity(service_location_id=location_id, **kwargs)
        unit_db.add(amenity)
        unit_db.commit()
        return amenity

    return _make

