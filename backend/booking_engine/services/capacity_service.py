# backend/booking_engine/services/capacity_service.py
"""
Capacity Service for the booking engine

Tracks reservations against capacity for each exact slot datetime:
- Lazy, idempotent slot creation
- Atomic reserve / release / block / unblock (conditional UPDATEs)
- Capacity adjustment, warnings and statistics
- Cleanup of old unused slots

A reservation that does not fit is a False result, not an exception.
Every successful change invalidates the cached availability of the slot's
location inside the same transaction.
"""

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import CapacityStatus
from ..core.exceptions import ValidationException
from ..models.capacity_slot import CapacitySlot
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.capacity_slot_repository import (
    CapacitySlotRepository,
    repair_capacity_counters,
)
from ..schemas.availability import CapacityStats
from .base import BaseService, Clock

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

__all__ = ["CapacityService", "repair_capacity_counters"]


class CapacityService(BaseService):
    """
    Service for capacity slot bookkeeping.

    Counter writes never read-modify-write in Python; the repository issues
    one guarded UPDATE and the row is refreshed afterwards.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        capacity_repository: Optional[CapacitySlotRepository] = None,
    ):
        super().__init__(db, cache, clock)
        self.repository = capacity_repository or RepositoryFactory.create_capacity_slot_repository(db)

    @staticmethod
    def _check_count(count: int) -> None:
        if count < 1:
            raise ValidationException(f"Count must be at least 1, got {count}", code="INVALID_COUNT")

    def _finish_change(self, slot: CapacitySlot, operation: str, succeeded: bool) -> bool:
        self.repository.refresh(slot)
        if succeeded:
            self.invalidate_location(slot.service_location_id)
            self.invalidate_service(slot.service_id)
        prometheus_metrics.record_capacity_change(operation, succeeded)
        return succeeded

    @BaseService.measure_operation("find_or_create")
    def find_or_create(
        self,
        service_id: str,
        location_id: Optional[str],
        slot_datetime: datetime,
        default_max_capacity: Optional[int] = None,
    ) -> CapacitySlot:
        """
        Get the slot for (service, location, datetime), creating it when missing.

        Args:
            service_id: Service the slot belongs to
            location_id: Location, or None for location-less services
            slot_datetime: Exact slot start
            default_max_capacity: Capacity for a newly created slot
        """
        max_capacity = default_max_capacity or settings.default_slot_capacity
        with self.transaction():
            slot = self.repository.find_or_create(
                service_id, location_id, slot_datetime, default_max_capacity=max_capacity
            )
        return slot

    @BaseService.measure_operation("reserve")
    def reserve(self, slot: CapacitySlot, count: int = 1, now: Optional[datetime] = None) -> bool:
        """
        Take ``count`` units of a slot.

        Succeeds only when the slot is upcoming, not blocked and has at
        least ``count`` units free at the moment the UPDATE runs.

        Returns:
            True if reserved, False if the slot could not take the reservation
        """
        self._check_count(count)
        moment = now or self.now()
        with self.transaction():
            reserved = self.repository.try_reserve(slot.id, count, moment)
            self._finish_change(slot, "reserve", reserved)

        if reserved:
            self.logger.info(
                f"Reserved {count} on capacity slot {slot.id} "
                f"({slot.current_bookings}/{slot.max_capacity})"
            )
        else:
            self.logger.info(f"Capacity slot {slot.id} could not take {count} more booking(s)")
        return reserved

    @BaseService.measure_operation("release")
    def release(self, slot: CapacitySlot, count: int = 1) -> bool:
        """Give back ``count`` units; False if fewer than ``count`` are booked."""
        self._check_count(count)
        with self.transaction():
            released = self.repository.try_release(slot.id, count)
            self._finish_change(slot, "release", released)
        if not released:
            self.logger.warning(
                f"Release of {count} refused on capacity slot {slot.id}: only {slot.current_bookings} booked"
            )
        return released

    @BaseService.measure_operation("block")
    def block(self, slot: CapacitySlot, count: int, reason: Optional[str] = None) -> bool:
        """Withhold ``count`` free units from sale."""
        self._check_count(count)
        with self.transaction():
            blocked = self.repository.try_block(slot.id, count, reason)
            self._finish_change(slot, "block", blocked)
        return blocked

    @BaseService.measure_operation("unblock")
    def unblock(self, slot: CapacitySlot, count: int) -> bool:
        self._check_count(count)
        with self.transaction():
            unblocked = self.repository.try_unblock(slot.id, count)
            self._finish_change(slot, "unblock", unblocked)
        return unblocked

    @BaseService.measure_operation("block_completely")
    def block_completely(self, slot: CapacitySlot, reason: Optional[str] = None) -> bool:
        with self.transaction():
            changed = self.repository.set_blocked(slot.id, True, reason)
            self._finish_change(slot, "block", changed)
        self.logger.info(f"Capacity slot {slot.id} blocked: {reason or 'no reason given'}")
        return changed

    @BaseService.measure_operation("unblock_completely")
    def unblock_completely(self, slot: CapacitySlot) -> bool:
        with self.transaction():
            changed = self.repository.set_blocked(slot.id, False)
            self._finish_change(slot, "unblock", changed)
        return changed

    @BaseService.measure_operation("adjust_capacity")
    def adjust_capacity(self, slot: CapacitySlot, new_max: int) -> bool:
        """
        Change max_capacity.

        Returns False when ``new_max`` would drop below current bookings plus
        blocked units.
        """
        if new_max < 1:
            raise ValidationException(
                f"Capacity must be at least 1, got {new_max}", code="INVALID_CAPACITY"
            )
        with self.transaction():
            adjusted = self.repository.try_adjust_capacity(slot.id, new_max)
            self._finish_change(slot, "adjust", adjusted)
        if not adjusted:
            self.logger.warning(
                f"Cannot reduce capacity slot {slot.id} to {new_max}: "
                f"{slot.current_bookings} booked, {slot.blocked_slots} blocked"
            )
        return adjusted

    def save(self, slot: CapacitySlot) -> List[str]:
        """Persist direct attribute edits, repairing counters first."""
        with self.transaction():
            clamped = self.repository.save(slot)
            self.invalidate_location(slot.service_location_id)
            self.invalidate_service(slot.service_id)
        return clamped

    # Read helpers

    def is_available(self, slot: CapacitySlot, count: int = 1) -> bool:
        return slot.is_available(count)

    def can_book(self, slot: CapacitySlot, count: int = 1, now: Optional[datetime] = None) -> bool:
        return slot.can_book(now or self.now(), count)

    def get_warnings(self, slot: CapacitySlot) -> List[str]:
        return slot.get_warnings(settings.nearly_full_threshold)

    @BaseService.measure_operation("get_capacity_stats")
    def get_capacity_stats(
        self,
        service_id: str,
        start: datetime,
        end: datetime,
        location_id: Optional[str] = None,
    ) -> CapacityStats:
        """Aggregate capacity over a service's slots in [start, end]."""
        slots = self.repository.get_slots_in_range(service_id, start, end, location_id)

        total_capacity = sum(slot.max_capacity for slot in slots)
        total_bookings = sum(slot.current_bookings for slot in slots)
        utilization = round(total_bookings / total_capacity * 100, 1) if total_capacity else 0.0

        return CapacityStats(
            total_slots=len(slots),
            total_capacity=total_capacity,
            total_bookings=total_bookings,
            total_blocked=sum(slot.blocked_slots for slot in slots),
            available_capacity=sum(slot.available_slots for slot in slots),
            utilization_rate=utilization,
            fully_booked_slots=sum(1 for slot in slots if slot.status == CapacityStatus.FULL),
            blocked_slots=sum(1 for slot in slots if slot.is_blocked),
        )

    @BaseService.measure_operation("cleanup_past_slots")
    def cleanup_past_slots(self, days_old: Optional[int] = None) -> int:
        """Delete slots older than ``days_old`` days that never held a booking."""
        days = days_old if days_old is not None else settings.capacity_cleanup_days
        cutoff = self.now() - timedelta(days=days)
        with self.transaction():
            deleted = self.repository.delete_unused_before(cutoff)
        self.logger.info(f"Cleaned up {deleted} unused capacity slots older than {cutoff}")
        return deleted
