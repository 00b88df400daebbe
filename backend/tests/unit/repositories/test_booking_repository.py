# backend/tests/unit/repositories/test_booking_repository.py
"""
Tests for the booking queries the slot engines and impact analysis rely on.
"""

from datetime import date, datetime

import pytest

from booking_engine.core.enums import ACTIVE_FUTURE_STATUSES, BookingStatus
from booking_engine.repositories import RepositoryFactory


def _at(day: int, hour: int) -> datetime:
    return datetime(2024, 1, day, hour)


@pytest.fixture
def repository(unit_db):
    return RepositoryFactory.create_booking_repository(unit_db)


@pytest.fixture
def location(make_location):
    return make_location()


class TestBookingRepository:
    def test_overlap_is_half_open(self, repository, location, make_booking):
        inside = make_booking(_at(1, 10), _at(1, 12), service_location_id=location.id)
        make_booking(_at(1, 12), _at(1, 14), service_location_id=location.id)
        make_booking(_at(1, 8), _at(1, 10), service_location_id=location.id)

        found = repository.get_location_bookings_overlapping(location.id, _at(1, 10), _at(1, 12))

        assert found == [inside]

    def test_overlap_excludes_cancelled_by_default(self, repository, location, make_booking):
        make_booking(
            _at(1, 10), _at(1, 12), service_location_id=location.id, status=BookingStatus.CANCELLED.value
        )
        assert repository.get_location_bookings_overlapping(location.id, _at(1, 0), _at(2, 0)) == []
        assert len(repository.get_location_bookings_overlapping(location.id, _at(1, 0), _at(2, 0), ())) == 1

    def test_upcoming_filters_by_status(self, repository, location, make_booking, frozen_now):
        pending = make_booking(
            _at(2, 10), _at(2, 12), service_location_id=location.id, status=BookingStatus.PENDING.value
        )
        confirmed = make_booking(_at(1, 10), _at(1, 12), service_location_id=location.id)
        make_booking(
            _at(3, 10), _at(3, 12), service_location_id=location.id, status=BookingStatus.COMPLETED.value
        )
        make_booking(datetime(2023, 11, 1, 10), datetime(2023, 11, 1, 12), service_location_id=location.id)

        upcoming = repository.get_upcoming_location_bookings(
            location.id, frozen_now, statuses=ACTIVE_FUTURE_STATUSES
        )

        assert upcoming == [confirmed, pending]

    def test_bookings_on_date_use_start_day(self, repository, location, make_booking):
        late = make_booking(_at(1, 22), _at(2, 2), service_location_id=location.id)

        assert repository.get_location_bookings_on_date(location.id, date(2024, 1, 1)) == [late]
        assert repository.get_location_bookings_on_date(location.id, date(2024, 1, 2)) == []

    def test_other_locations_are_ignored(self, repository, location, make_location, make_booking):
        other = make_location(name="Garden")
        make_booking(_at(1, 10), _at(1, 12), service_location_id=other.id)

        assert repository.get_location_bookings(location.id) == []
        assert len(repository.get_location_bookings(other.id)) == 1
