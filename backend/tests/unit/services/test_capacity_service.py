# backend/tests/unit/services/test_capacity_service.py
"""
Unit tests for CapacityService.

These run against the in-memory database because the counter guards live in
the UPDATE statements themselves.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from booking_engine.core.enums import CapacityStatus
from booking_engine.core.exceptions import ValidationException
from booking_engine.models import CapacitySlot
from booking_engine.services.cache_service import CacheKeyBuilder
from booking_engine.services.capacity_service import CapacityService

SLOT_TIME = datetime(2024, 1, 1, 10, 0)


@pytest.fixture
def service_row(make_service):
    return make_service()


@pytest.fixture
def capacity_service(unit_db, cache, clock):
    return CapacityService(unit_db, cache, clock)


@pytest.fixture
def make_slot(unit_db, service_row):
    def _make(**kwargs) -> CapacitySlot:
        kwargs.setdefault("slot_datetime", SLOT_TIME)
        slot = CapacitySlot(service_id=service_row.id, **kwargs)
        unit_db.add(slot)
        unit_db.commit()
        return slot

    return _make


class TestReserve:
    def test_full_slot_rejects_reservation_and_keeps_counters(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=3, current_bookings=3, blocked_slots=0)

        assert not capacity_service.is_available(slot)
        assert capacity_service.reserve(slot) is False
        assert slot.current_bookings == 3
        assert slot.blocked_slots == 0
        assert slot.status == CapacityStatus.FULL

    def test_reserve_then_release_round_trip(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=2)

        assert capacity_service.reserve(slot) is True
        assert slot.current_bookings == 1
        assert slot.status == CapacityStatus.PARTIAL

        assert capacity_service.release(slot) is True
        assert slot.current_bookings == 0
        assert slot.status == CapacityStatus.AVAILABLE

    def test_release_without_bookings_is_refused(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=2)
        assert capacity_service.release(slot) is False
        assert slot.current_bookings == 0

    def test_reserve_more_than_free_units(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=3, current_bookings=1)
        assert capacity_service.reserve(slot, 3) is False
        assert capacity_service.reserve(slot, 2) is True
        assert slot.current_bookings == 3

    def test_past_slot_cannot_be_reserved(self, capacity_service, make_slot, frozen_now):
        slot = make_slot(slot_datetime=frozen_now - timedelta(hours=1), max_capacity=5)
        assert capacity_service.reserve(slot) is False
        assert not capacity_service.can_book(slot)

    def test_blocked_slot_cannot_be_reserved(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=5)
        assert capacity_service.block_completely(slot, "Private event") is True

        assert slot.status == CapacityStatus.BLOCKED
        assert capacity_service.reserve(slot) is False
        assert capacity_service.get_warnings(slot) == ["Slot is blocked: Private event"]

        capacity_service.unblock_completely(slot)
        assert capacity_service.reserve(slot) is True

    @pytest.mark.parametrize("count", [0, -1])
    def test_non_positive_count_is_rejected(self, capacity_service, make_slot, count):
        slot = make_slot()
        with pytest.raises(ValidationException):
            capacity_service.reserve(slot, count)

    def test_successful_reserve_invalidates_location_cache(
        self, capacity_service, make_slot, make_location, cache
    ):
        location = make_location()
        slot = make_slot(service_location_id=location.id, max_capacity=2)
        key = CacheKeyBuilder.build("venue_slots", location.id, "probe")
        cache.set(key, ["cached"], tags=[("location", location.id)])

        capacity_service.reserve(slot)

        assert cache.get(key) is None


class TestBlocking:
    def test_partial_block_reduces_available_units(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=3)

        assert capacity_service.block(slot, 2, "Staff training") is True
        assert slot.available_slots == 1
        assert slot.block_reason == "Staff training"
        assert capacity_service.reserve(slot, 2) is False
        assert capacity_service.reserve(slot, 1) is True

    def test_block_cannot_take_booked_units(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=2, current_bookings=2)
        assert capacity_service.block(slot, 1) is False

    def test_unblock_more_than_blocked_is_refused(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=3, blocked_slots=1)
        assert capacity_service.unblock(slot, 2) is False
        assert capacity_service.unblock(slot, 1) is True
        assert slot.blocked_slots == 0


class TestAdjustCapacity:
    def test_cannot_shrink_below_bookings_plus_blocks(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=5, current_bookings=2, blocked_slots=1)
        assert capacity_service.adjust_capacity(slot, 2) is False
        assert slot.max_capacity == 5
        assert capacity_service.adjust_capacity(slot, 3) is True
        assert slot.max_capacity == 3

    def test_capacity_below_one_is_invalid(self, capacity_service, make_slot):
        with pytest.raises(ValidationException):
            capacity_service.adjust_capacity(make_slot(), 0)


class TestSlotLifecycle:
    def test_find_or_create_is_idempotent(self, capacity_service, service_row):
        first = capacity_service.find_or_create(service_row.id, None, SLOT_TIME, default_max_capacity=4)
        second = capacity_service.find_or_create(service_row.id, None, SLOT_TIME)

        assert first.id == second.id
        assert second.max_capacity == 4

    def test_location_less_duplicate_is_rejected_by_the_database(self, unit_db, make_slot, service_row):
        make_slot()
        unit_db.add(CapacitySlot(service_id=service_row.id, slot_datetime=SLOT_TIME))

        with pytest.raises(IntegrityError):
            unit_db.commit()
        unit_db.rollback()

    def test_located_and_location_less_slots_coexist(self, unit_db, make_slot, make_location):
        location = make_location()
        make_slot()
        make_slot(service_location_id=location.id)

        assert unit_db.query(CapacitySlot).count() == 2

    def test_find_or_create_rereads_after_losing_the_insert(
        self, unit_db, capacity_service, make_slot
    ):
        winner = make_slot(max_capacity=2)

        with patch.object(capacity_service.repository, "find_slot", side_effect=[None, winner]):
            slot = capacity_service.find_or_create(winner.service_id, None, SLOT_TIME)

        assert slot is winner
        assert unit_db.query(CapacitySlot).count() == 1

    def test_save_clamps_out_of_range_counters(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=2)
        slot.current_bookings = -3
        slot.max_capacity = 0

        clamped = capacity_service.save(slot)

        assert clamped == ["current_bookings", "max_capacity"]
        assert slot.current_bookings == 0
        assert slot.max_capacity == 1

    def test_nearly_full_warning(self, capacity_service, make_slot):
        slot = make_slot(max_capacity=10, current_bookings=9)
        assert capacity_service.get_warnings(slot) == ["Slot is nearly full (90.0% utilized)"]

    def test_capacity_stats(self, capacity_service, make_slot, service_row):
        make_slot(slot_datetime=SLOT_TIME, max_capacity=4, current_bookings=2)
        make_slot(slot_datetime=SLOT_TIME + timedelta(hours=1), max_capacity=2, current_bookings=2)
        make_slot(slot_datetime=SLOT_TIME + timedelta(hours=2), max_capacity=2, is_blocked=True)
        stats = capacity_service.get_capacity_stats(
            service_row.id, SLOT_TIME, SLOT_TIME + timedelta(hours=3)
        )

        assert stats.total_slots == 3
        assert stats.total_capacity == 8
        assert stats.total_bookings == 4
        assert stats.utilization_rate == 50.0
        assert stats.fully_booked_slots == 1
        assert stats.blocked_slots == 1

    def test_cleanup_removes_only_old_unused_slots(self, capacity_service, make_slot, frozen_now):
        old_unused = make_slot(slot_datetime=frozen_now - timedelta(days=60))
        old_used = make_slot(
            slot_datetime=frozen_now - timedelta(days=59), max_capacity=2, current_bookings=1
        )
        recent = make_slot(slot_datetime=frozen_now - timedelta(days=5))

        assert capacity_service.cleanup_past_slots(days_old=30) == 1
        remaining = {
            slot.id
            for slot in capacity_service.repository.get_slots_in_range(
                old_used.service_id, frozen_now - timedelta(days=90), frozen_now
            )
        }
        assert remaining == {old_used.id, recent.id}
        assert old_unused.id not in remaining
