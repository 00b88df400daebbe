# backend/tests/unit/services/test_venue_impact_analyzer.py
"""
Unit tests for VenueImpactAnalyzer and its overlap helpers.
"""

from datetime import date, datetime, time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from booking_engine.core.enums import (
    BookingStatus,
    ConflictSeverity,
    ImpactAction,
    VenueWindowType,
)
from booking_engine.models import CapacitySlot, VenueAvailabilityWindow
from booking_engine.repositories import RepositoryFactory
from booking_engine.schemas.venue import BookingImpact, VenueSlot
from booking_engine.services.venue_impact_analyzer import (
    VenueImpactAnalyzer,
    as_window,
    conflict_severity,
    find_overlap,
)

MONDAY = date(2024, 1, 1)


def _at(hour: int, minute: int = 0, on_date: date = MONDAY) -> datetime:
    return datetime.combine(on_date, time(hour, minute))


def _window(window_id: str = "w1", **kwargs) -> VenueAvailabilityWindow:
    kwargs.setdefault("service_location_id", "loc")
    kwargs.setdefault("earliest_access", time(9))
    kwargs.setdefault("latest_departure", time(22))
    return VenueAvailabilityWindow(id=window_id, **kwargs)


def _impact(booking, action: ImpactAction = ImpactAction.MANUAL_REVIEW, details=None) -> BookingImpact:
    return BookingImpact(
        booking_id=booking.id,
        scheduled_at=booking.scheduled_at,
        ends_at=booking.ends_at,
        status=booking.status,
        impact_type="time_restriction",
        severity=ConflictSeverity.HIGH,
        recommended_action=action,
        details=details if details is not None else ["Too late"],
    )


@pytest.fixture
def location(make_location):
    return make_location()


@pytest.fixture
def analyzer(unit_db, cache, clock):
    return VenueImpactAnalyzer(unit_db, cache, clock)


class TestFindOverlap:
    def test_recurring_windows_on_same_day_with_overlapping_hours(self):
        conflict = find_overlap(
            _window("new", day_of_week=1, earliest_access=time(18)),
            _window("old", day_of_week=1),
        )

        assert conflict.window_id == "old"
        assert conflict.overlap_type == "time_overlap"
        assert conflict.severity == ConflictSeverity.HIGH
        assert conflict.details["existing_time"] == "09:00 - 22:00"

    def test_different_weekdays_do_not_overlap(self):
        assert find_overlap(_window("a", day_of_week=1), _window("b", day_of_week=2)) is None

    def test_touching_hours_do_not_overlap(self):
        morning = _window("a", day_of_week=1, earliest_access=time(9), latest_departure=time(12))
        afternoon = _window("b", day_of_week=1, earliest_access=time(12), latest_departure=time(15))
        assert find_overlap(morning, afternoon) is None

    def test_dated_spans_overlap_inclusively(self):
        span = _window("a", date_range_start=date(2024, 1, 1), date_range_end=date(2024, 1, 3))

        assert find_overlap(span, _window("b", specific_date=date(2024, 1, 3))) is not None
        assert find_overlap(span, _window("c", specific_date=date(2024, 1, 4))) is None

    def test_recurring_never_overlaps_dated(self):
        assert find_overlap(_window("a", day_of_week=1), _window("b", specific_date=MONDAY)) is None

    @pytest.mark.parametrize(
        "type_a,type_b,expected",
        [
            ("maintenance", "regular", ConflictSeverity.CRITICAL),
            ("special_event", "maintenance", ConflictSeverity.CRITICAL),
            ("special_event", "regular", ConflictSeverity.MEDIUM),
            ("regular", "regular", ConflictSeverity.HIGH),
            ("seasonal", "special_event", ConflictSeverity.HIGH),
        ],
    )
    def test_conflict_severity(self, type_a, type_b, expected):
        assert conflict_severity(type_a, type_b) == expected

    def test_as_window_stores_enums_by_value(self):
        window = as_window(
            {
                "service_location_id": "loc",
                "window_type": VenueWindowType.MAINTENANCE,
                "specific_date": MONDAY,
            }
        )
        assert window.window_type == "maintenance"
        assert window.is_maintenance


class TestOverCapacityPeriods:
    def test_groups_are_seeded_greedily(self):
        first = SimpleNamespace(id="a", scheduled_at=_at(10), ends_at=_at(12))
        second = SimpleNamespace(id="b", scheduled_at=_at(11), ends_at=_at(13))
        third = SimpleNamespace(id="c", scheduled_at=_at(12, 30), ends_at=_at(14))

        periods = VenueImpactAnalyzer.over_capacity_periods([first, second, third], 1)

        # "c" overlaps "b" but "b" already belongs to the first group
        assert len(periods) == 1
        assert periods[0].start_time == _at(10)
        assert periods[0].end_time == _at(13)
        assert periods[0].concurrent_bookings == 2
        assert periods[0].excess == 1

    def test_within_capacity(self):
        bookings = [
            SimpleNamespace(id="a", scheduled_at=_at(10), ends_at=_at(12)),
            SimpleNamespace(id="b", scheduled_at=_at(11), ends_at=_at(13)),
        ]
        assert VenueImpactAnalyzer.over_capacity_periods(bookings, 2) == []


class TestAssessImpact:
    def test_maintenance_removes_availability(
        self, analyzer, location, make_venue_window, make_booking
    ):
        window = make_venue_window(location.id, day_of_week=1)
        booking = make_booking(_at(10), _at(12), service_location_id=location.id)
        make_booking(
            _at(14), _at(16), service_location_id=location.id, status=BookingStatus.COMPLETED.value
        )

        report = analyzer.assess_booking_impact(
            window,
            {"service_location_id": location.id, "window_type": "maintenance", "day_of_week": 1},
        )

        assert report.total_affected == 1
        assert report.has_conflicts
        assert report.affected_bookings[0].booking_id == booking.id
        assert report.affected_bookings[0].impact_type == "availability_removed"

    def test_early_start_is_a_time_restriction(
        self, analyzer, location, make_venue_window, make_booking
    ):
        window = make_venue_window(location.id, day_of_week=1)
        make_booking(_at(9), _at(11), service_location_id=location.id)

        report = analyzer.assess_booking_impact(
            window,
            {
                "service_location_id": location.id,
                "day_of_week": 1,
                "earliest_access": time(10),
                "latest_departure": time(22),
            },
        )

        assert report.affected_bookings[0].details == [
            "Booking starts at 09:00, before earliest access 10:00"
        ]

    def test_bookings_on_other_days_are_unaffected(
        self, analyzer, location, make_venue_window, make_booking
    ):
        window = make_venue_window(location.id, day_of_week=1)
        make_booking(_at(10, on_date=date(2024, 1, 2)), _at(12, on_date=date(2024, 1, 2)), service_location_id=location.id)

        report = analyzer.assess_booking_impact(
            window, {"service_location_id": location.id, "window_type": "maintenance", "day_of_week": 1}
        )
        assert report.total_affected == 0
        assert not report.has_conflicts

    def test_maintenance_windows_have_no_dependents(
        self, analyzer, location, make_venue_window, make_booking
    ):
        window = make_venue_window(
            location.id, window_type=VenueWindowType.MAINTENANCE.value, day_of_week=1
        )
        make_booking(_at(10), _at(12), service_location_id=location.id)
        assert analyzer.get_dependent_bookings(window) == []


class TestHandleAffectedBookings:
    def test_cancel_uses_conflict_reason(self, analyzer, location, make_booking, frozen_now):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.CANCEL_BOOKING
        )

        assert resolutions[0].outcome == "cancelled"
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancellation_reason == "Venue availability conflict - Too late"
        assert booking.cancelled_at == frozen_now

    def test_recommended_action_applies_without_override(self, analyzer, location, make_booking):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)

        resolutions = analyzer.handle_affected_bookings([_impact(booking, ImpactAction.CANCEL_BOOKING)])

        assert resolutions[0].requested_action == ImpactAction.CANCEL_BOOKING
        assert booking.status == BookingStatus.CANCELLED.value

    @pytest.mark.parametrize("action", [ImpactAction.MANUAL_REVIEW, ImpactAction.NONE])
    def test_review_and_none_flag_the_booking(self, analyzer, location, make_booking, action):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)

        resolutions = analyzer.handle_affected_bookings([_impact(booking)], action_override=action)

        assert resolutions[0].outcome == "flagged_for_review"
        assert booking.requires_review
        assert booking.review_reason == "Too late"
        assert booking.status == BookingStatus.CONFIRMED.value

    def test_missing_booking_is_reported(self, analyzer, location, make_booking):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)
        impact = _impact(booking).model_copy(update={"booking_id": "missing"})

        resolutions = analyzer.handle_affected_bookings([impact])

        assert resolutions[0].outcome == "not_found"
        assert resolutions[0].booking_id == "missing"

    def test_auto_reschedule_takes_first_different_start(
        self, unit_db, cache, clock, location, make_booking
    ):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)
        same_start = VenueSlot(
            start_time=_at(18), end_time=_at(22), duration_minutes=240, window_id="w", window_type="regular"
        )
        alternative = VenueSlot(
            start_time=_at(9), end_time=_at(13), duration_minutes=240, window_id="w", window_type="regular"
        )
        finder = MagicMock(return_value=[same_start, alternative])
        analyzer = VenueImpactAnalyzer(unit_db, cache, clock, slot_finder=finder)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert resolutions[0].outcome == "rescheduled"
        assert (booking.scheduled_at, booking.ends_at) == (_at(9), _at(13))
        location_id, earliest, latest, duration, options = finder.call_args.args
        assert location_id == location.id
        assert (earliest, latest) == (date(2023, 12, 29), date(2024, 1, 8))
        assert duration == 240
        assert options.exclude_booking_ids == [booking.id]
        assert options.use_cache is False

    def test_reschedule_search_never_starts_before_today(
        self, unit_db, cache, clock, location, make_booking, frozen_now
    ):
        tomorrow = date(2023, 12, 2)
        booking = make_booking(_at(18, on_date=tomorrow), _at(20, on_date=tomorrow), service_location_id=location.id)
        finder = MagicMock(return_value=[])
        analyzer = VenueImpactAnalyzer(unit_db, cache, clock, slot_finder=finder)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert finder.call_args.args[1] == frozen_now.date()
        assert resolutions[0].outcome == "flagged_for_review"
        assert resolutions[0].reason.startswith("No suitable alternative slots found")
        assert booking.scheduled_at == _at(18, on_date=tomorrow)

    def test_auto_reschedule_without_finder_flags(self, analyzer, location, make_booking):
        booking = make_booking(_at(18), _at(22), service_location_id=location.id)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert resolutions[0].outcome == "flagged_for_review"
        assert booking.requires_review


def _venue_slot(start: datetime, end: datetime) -> VenueSlot:
    return VenueSlot(
        start_time=start,
        end_time=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        window_id="w",
        window_type="regular",
    )


class TestResolutionCapacity:
    @pytest.fixture
    def service(self, make_service):
        return make_service()

    @pytest.fixture
    def add_slot(self, unit_db, service, location):
        def _add(start: datetime, current_bookings: int = 1, max_capacity: int = 1) -> CapacitySlot:
            slot = CapacitySlot(
                service_id=service.id,
                service_location_id=location.id,
                slot_datetime=start,
                max_capacity=max_capacity,
                current_bookings=current_bookings,
            )
            unit_db.add(slot)
            unit_db.commit()
            return slot

        return _add

    @pytest.fixture
    def booking(self, make_booking, service, location):
        return make_booking(_at(18), _at(22), service_id=service.id, service_location_id=location.id)

    def _slot_at(self, unit_db, service, location, start):
        return RepositoryFactory.create_capacity_slot_repository(unit_db).find_slot(
            service.id, location.id, start
        )

    def test_cancel_releases_the_capacity_unit(self, analyzer, unit_db, add_slot, booking):
        slot = add_slot(_at(18))

        analyzer.handle_affected_bookings([_impact(booking)], action_override=ImpactAction.CANCEL_BOOKING)

        unit_db.refresh(slot)
        assert booking.status == BookingStatus.CANCELLED.value
        assert slot.current_bookings == 0

    def test_reschedule_moves_the_capacity_unit(
        self, unit_db, cache, clock, service, location, add_slot, booking
    ):
        old_slot = add_slot(_at(18))
        finder = MagicMock(return_value=[_venue_slot(_at(9), _at(13))])
        analyzer = VenueImpactAnalyzer(unit_db, cache, clock, slot_finder=finder)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert resolutions[0].outcome == "rescheduled"
        unit_db.refresh(old_slot)
        assert old_slot.current_bookings == 0
        new_slot = self._slot_at(unit_db, service, location, _at(9))
        assert new_slot is not None
        assert new_slot.current_bookings == 1

    def test_reschedule_skips_alternatives_without_capacity(
        self, unit_db, cache, clock, service, location, add_slot, booking
    ):
        add_slot(_at(18))
        full = add_slot(_at(9))
        finder = MagicMock(
            return_value=[_venue_slot(_at(9), _at(13)), _venue_slot(_at(14), _at(18))]
        )
        analyzer = VenueImpactAnalyzer(unit_db, cache, clock, slot_finder=finder)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert resolutions[0].new_start == _at(14)
        unit_db.refresh(full)
        assert full.current_bookings == 1
        assert self._slot_at(unit_db, service, location, _at(14)).current_bookings == 1

    def test_reschedule_without_free_capacity_flags_and_keeps_the_unit(
        self, unit_db, cache, clock, add_slot, booking
    ):
        old_slot = add_slot(_at(18))
        add_slot(_at(9))
        finder = MagicMock(return_value=[_venue_slot(_at(9), _at(13))])
        analyzer = VenueImpactAnalyzer(unit_db, cache, clock, slot_finder=finder)

        resolutions = analyzer.handle_affected_bookings(
            [_impact(booking)], action_override=ImpactAction.AUTO_RESCHEDULE
        )

        assert resolutions[0].outcome == "flagged_for_review"
        assert booking.scheduled_at == _at(18)
        unit_db.refresh(old_slot)
        assert old_slot.current_bookings == 1

    @pytest.mark.parametrize("action", [ImpactAction.CANCEL_BOOKING, ImpactAction.MANUAL_REVIEW])
    def test_service_tagged_listings_are_invalidated(
        self, analyzer, cache, service, location, booking, action
    ):
        cache.set("service-listing", [1], tags=[("service", service.id)])
        cache.set("location-listing", [2], tags=[("location", location.id)])

        analyzer.handle_affected_bookings([_impact(booking)], action_override=action)

        assert cache.get("service-listing") is None
        assert cache.get("location-listing") is None


class TestWindowReports:
    def test_conflicts_report(self, analyzer, location, make_venue_window, make_booking):
        window = make_venue_window(
            location.id, day_of_week=1, quiet_hours_start=time(21), quiet_hours_end=time(22)
        )
        make_booking(_at(10), _at(14), service_location_id=location.id)
        make_booking(_at(12), _at(16), service_location_id=location.id)
        touching_quiet = make_booking(_at(18), _at(21), service_location_id=location.id)

        report = analyzer.get_window_conflicts(window)

        assert report.scheduling_conflicts == []
        assert [c.booking_id for c in report.booking_conflicts] == [touching_quiet.id]
        assert report.booking_conflicts[0].conflict_type == "quiet_hours"
        assert report.booking_conflicts[0].severity == ConflictSeverity.MEDIUM
        assert len(report.capacity_issues) == 1
        period = report.capacity_issues[0].period
        assert (period.start_time, period.end_time) == (_at(10), _at(16))
        assert period.excess == 1

    def test_scheduling_conflicts_exclude_the_window_itself(
        self, analyzer, location, make_venue_window
    ):
        window = make_venue_window(location.id, day_of_week=1)
        other = make_venue_window(location.id, day_of_week=1, earliest_access=time(20), latest_departure=time(23))

        report = analyzer.get_window_conflicts(window)

        assert [c.window_id for c in report.scheduling_conflicts] == [other.id]

    def test_usage_stats_over_last_thirty_days(
        self, analyzer, location, make_venue_window, make_booking
    ):
        window = make_venue_window(location.id, day_of_week=5)  # Fridays
        completed = BookingStatus.COMPLETED.value
        make_booking(
            datetime(2023, 11, 3, 10), datetime(2023, 11, 3, 14),
            service_location_id=location.id, status=completed, total_amount=10000,
        )
        make_booking(
            datetime(2023, 11, 10, 10), datetime(2023, 11, 10, 12),
            service_location_id=location.id, status=completed, total_amount=20000,
        )
        make_booking(
            datetime(2023, 11, 17, 18), datetime(2023, 11, 17, 20),
            service_location_id=location.id, status=BookingStatus.CANCELLED.value,
        )
        # Older than thirty days
        make_booking(
            datetime(2023, 10, 6, 10), datetime(2023, 10, 6, 12),
            service_location_id=location.id, status=completed, total_amount=99900,
        )

        stats = analyzer.get_window_usage_stats(window)

        assert stats.total_bookings == 2
        # Five Fridays between 2023-11-01 and 2023-12-01
        assert stats.utilization_rate == 40.0
        assert stats.average_event_duration == 180
        assert stats.peak_usage_times == {"10:00": 2}
        assert stats.revenue_generated.total_revenue == 30000
        assert stats.revenue_generated.average_booking_value == 15000
        assert [(issue.type, issue.count) for issue in stats.common_issues] == [("cancellations", 1)]

    def test_usage_stats_without_bookings(self, analyzer, location, make_venue_window):
        window = make_venue_window(location.id, day_of_week=5)

        stats = analyzer.get_window_usage_stats(window)

        assert stats.total_bookings == 0
        assert stats.utilization_rate == 0.0
        assert stats.peak_usage_times == {}
        assert stats.common_issues == []
