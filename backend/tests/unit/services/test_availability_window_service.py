# backend/tests/unit/services/test_availability_window_service.py
"""
Unit tests for AvailabilityWindowService (service window administration).
"""

from datetime import date, time

import pytest

from booking_engine.core.exceptions import ConfigurationError, NotFoundException
from booking_engine.services.availability_window_service import AvailabilityWindowService
from booking_engine.services.time_slot_service import TimeSlotService

MONDAY = date(2024, 1, 1)


@pytest.fixture
def service_row(make_service):
    return make_service()


@pytest.fixture
def window_service(unit_db, cache, clock):
    return AvailabilityWindowService(unit_db, cache, clock)


@pytest.fixture
def slot_service(unit_db, cache, clock):
    return TimeSlotService(unit_db, cache, clock)


def _window_data(service_id, **overrides):
    data = {
        "service_id": service_id,
        "day_of_week": 1,
        "start_time": time(9),
        "end_time": time(17),
    }
    data.update(overrides)
    return data


class TestCreateWindow:
    def test_create_weekly_window(self, window_service, service_row):
        window = window_service.create_window(_window_data(service_row.id, title="Weekdays"))

        assert window.id is not None
        assert window.pattern == "weekly"
        assert window.slot_duration_minutes == 60
        assert window_service.get_service_windows(service_row.id) == [window]

    def test_overnight_window_is_accepted(self, window_service, service_row):
        window = window_service.create_window(
            _window_data(service_row.id, start_time=time(22), end_time=time(2))
        )
        assert window.end_time == time(2)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"end_time": time(9)},
            {"slot_duration_minutes": 0},
            {"break_duration_minutes": -10},
            {"max_bookings": 0},
            {"day_of_week": None},
            {"pattern": "specific_date"},
            {"pattern": "date_range", "start_date": date(2024, 2, 1), "end_date": date(2024, 1, 1)},
        ],
    )
    def test_malformed_windows_are_never_persisted(self, window_service, service_row, overrides):
        with pytest.raises(ConfigurationError) as exc_info:
            window_service.create_window(_window_data(service_row.id, **overrides))

        assert exc_info.value.code == "INVALID_WINDOW_CONFIGURATION"
        assert window_service.get_service_windows(service_row.id) == []

    def test_unknown_service(self, window_service):
        with pytest.raises(NotFoundException) as exc_info:
            window_service.create_window(_window_data("missing"))
        assert exc_info.value.code == "SERVICE_NOT_FOUND"


class TestUpdateWindow:
    def test_partial_update_is_merged(self, window_service, service_row):
        window = window_service.create_window(_window_data(service_row.id))

        updated = window_service.update_window(window.id, {"end_time": time(12), "max_bookings": 3})

        assert updated.start_time == time(9)
        assert updated.end_time == time(12)
        assert updated.max_bookings == 3
        assert updated.service_id == service_row.id

    def test_merged_result_is_validated(self, window_service, service_row):
        window = window_service.create_window(_window_data(service_row.id))

        with pytest.raises(ConfigurationError):
            window_service.update_window(window.id, {"start_time": time(17)})

        assert window_service.get_service_windows(service_row.id)[0].start_time == time(9)

    def test_unknown_window(self, window_service):
        with pytest.raises(NotFoundException):
            window_service.update_window("missing", {"max_bookings": 2})


class TestCacheInvalidation:
    def test_window_changes_refresh_slot_listings(self, window_service, slot_service, service_row):
        window = window_service.create_window(_window_data(service_row.id))
        assert len(slot_service.get_available_slots(service_row.id, MONDAY, MONDAY)) == 8

        window_service.update_window(window.id, {"end_time": time(12)})
        assert len(slot_service.get_available_slots(service_row.id, MONDAY, MONDAY)) == 3

        assert window_service.delete_window(window.id) is True
        assert slot_service.get_available_slots(service_row.id, MONDAY, MONDAY) == []

    def test_blocked_exception_refreshes_slot_listings(
        self, window_service, slot_service, service_row
    ):
        window_service.create_window(_window_data(service_row.id))
        assert slot_service.get_available_slots(service_row.id, MONDAY, MONDAY)

        exception = window_service.add_exception(
            {
                "service_id": service_row.id,
                "exception_date": MONDAY,
                "exception_type": "blocked",
                "reason": "Bank holiday",
            }
        )

        assert exception.exception_type == "blocked"
        assert slot_service.get_available_slots(service_row.id, MONDAY, MONDAY) == []


class TestAddException:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"exception_type": "custom_hours"},
            {"exception_type": "custom_hours", "start_time": time(14), "end_time": time(12)},
            {"exception_type": "special_pricing"},
            {"exception_type": "holiday"},
        ],
    )
    def test_incomplete_exceptions_are_rejected(self, window_service, service_row, overrides):
        data = {"service_id": service_row.id, "exception_date": MONDAY}
        data.update(overrides)
        with pytest.raises(ConfigurationError):
            window_service.add_exception(data)

    def test_unknown_service(self, window_service):
        with pytest.raises(NotFoundException):
            window_service.add_exception(
                {"service_id": "missing", "exception_date": MONDAY, "exception_type": "blocked"}
            )
