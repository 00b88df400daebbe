# backend/booking_engine/repositories/capacity_slot_repository.py
"""
Capacity Slot Repository for the booking engine

Every counter change is a single conditional UPDATE whose WHERE clause
re-checks the guard (compare-and-set). The database serializes concurrent
writers on the row (PostgreSQL row lock, SQLite database lock) and the
loser re-evaluates the guard against the committed value, so two requests
can never both take the last unit. Success is ``rowcount == 1``.

Plain attribute edits go through ``save``, which runs the counter repair
hook before flushing.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.capacity_slot import CapacitySlot
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def repair_capacity_counters(slot: CapacitySlot) -> List[str]:
    """
    Clamp out-of-range counters before a slot is written.

    Negative current_bookings / blocked_slots become 0 and a max_capacity
    below 1 becomes 1. Every clamp is logged and counted.

    Returns:
        Names of the fields that were clamped
    """
    clamped: List[str] = []
    if slot.current_bookings is not None and slot.current_bookings < 0:
        logger.warning(
            f"Clamping current_bookings={slot.current_bookings} to 0 on capacity slot {slot.id}"
        )
        slot.current_bookings = 0
        clamped.append("current_bookings")
    if slot.blocked_slots is not None and slot.blocked_slots < 0:
        logger.warning(
            f"Clamping blocked_slots={slot.blocked_slots} to 0 on capacity slot {slot.id}"
        )
        slot.blocked_slots = 0
        clamped.append("blocked_slots")
    if slot.max_capacity is not None and slot.max_capacity < 1:
        logger.warning(
            f"Clamping max_capacity={slot.max_capacity} to 1 on capacity slot {slot.id}"
        )
        slot.max_capacity = 1
        clamped.append("max_capacity")
    for field in clamped:
        prometheus_metrics.record_capacity_clamp(field)
    return clamped


class CapacitySlotRepository(BaseRepository[CapacitySlot]):
    """Data access for capacity slots."""

    def __init__(self, db: Session):
        super().__init__(db, CapacitySlot)
        self.logger = logging.getLogger(__name__)

    # Lookups

    def find_slot(
        self, service_id: str, location_id: Optional[str], slot_datetime: datetime
    ) -> Optional[CapacitySlot]:
        """The slot for (service, location, datetime); a None location matches NULL."""
        try:
            query = self.db.query(CapacitySlot).filter(
                CapacitySlot.service_id == service_id,
                CapacitySlot.slot_datetime == slot_datetime,
            )
            if location_id is None:
                query = query.filter(CapacitySlot.service_location_id.is_(None))
            else:
                query = query.filter(CapacitySlot.service_location_id == location_id)
            return cast(Optional[CapacitySlot], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding capacity slot for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to find capacity slot: {str(e)}")

    def find_or_create(
        self,
        service_id: str,
        location_id: Optional[str],
        slot_datetime: datetime,
        default_max_capacity: int = 1,
    ) -> CapacitySlot:
        """
        Idempotent lookup-or-insert keyed by (service, location, datetime).

        A concurrent insert of the same key loses on the unique constraint
        (or, for a None location, the partial unique index) inside a
        savepoint and falls back to re-reading the winner's row.
        """
        existing = self.find_slot(service_id, location_id, slot_datetime)
        if existing is not None:
            return existing

        slot = CapacitySlot(
            service_id=service_id,
            service_location_id=location_id,
            slot_datetime=slot_datetime,
            max_capacity=default_max_capacity,
            current_bookings=0,
            blocked_slots=0,
        )
        repair_capacity_counters(slot)
        try:
            with self.db.begin_nested():
                self.db.add(slot)
            return slot
        except IntegrityError:
            self.logger.info(
                f"Capacity slot {service_id}/{location_id}/{slot_datetime} created concurrently, re-reading"
            )
            winner = self.find_slot(service_id, location_id, slot_datetime)
            if winner is None:
                raise RepositoryException(
                    f"Capacity slot {service_id}/{location_id}/{slot_datetime} vanished after conflict"
                )
            return winner

    def get_slots_in_range(
        self,
        service_id: str,
        start: datetime,
        end: datetime,
        location_id: Optional[str] = None,
    ) -> List[CapacitySlot]:
        """Slots of a service with slot_datetime in [start, end]."""
        try:
            query = self.db.query(CapacitySlot).filter(
                CapacitySlot.service_id == service_id,
                CapacitySlot.slot_datetime >= start,
                CapacitySlot.slot_datetime <= end,
            )
            if location_id:
                query = query.filter(CapacitySlot.service_location_id == location_id)
            return cast(List[CapacitySlot], query.order_by(CapacitySlot.slot_datetime).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting capacity slots for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get capacity slots: {str(e)}")

    def get_slot_map(
        self,
        service_id: str,
        location_id: Optional[str],
        start: datetime,
        end: datetime,
    ) -> Dict[datetime, CapacitySlot]:
        """Slots keyed by datetime for one exact (service, location) pair."""
        try:
            query = self.db.query(CapacitySlot).filter(
                CapacitySlot.service_id == service_id,
                CapacitySlot.slot_datetime >= start,
                CapacitySlot.slot_datetime <= end,
            )
            if location_id is None:
                query = query.filter(CapacitySlot.service_location_id.is_(None))
            else:
                query = query.filter(CapacitySlot.service_location_id == location_id)
            return {slot.slot_datetime: slot for slot in query.all()}
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting capacity slot map for {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get capacity slots: {str(e)}")

    # Writes

    def save(self, slot: CapacitySlot) -> List[str]:
        """Repair counters and flush. Returns the clamped field names."""
        clamped = repair_capacity_counters(slot)
        try:
            self.db.add(slot)
            self.db.flush()
            return clamped
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving capacity slot {slot.id}: {str(e)}")
            raise RepositoryException(f"Failed to save capacity slot: {str(e)}")

    def _conditional_update(self, slot_id: str, conditions: List[Any], values: Dict[str, Any]) -> bool:
        try:
            stmt = (
                update(CapacitySlot)
                .where(CapacitySlot.id == slot_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional update failed for capacity slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to update capacity slot: {str(e)}")

    @staticmethod
    def _available_expr():
        return CapacitySlot.max_capacity - CapacitySlot.current_bookings - CapacitySlot.blocked_slots

    def try_reserve(self, slot_id: str, count: int, now: datetime) -> bool:
        """current_bookings += count iff upcoming, unblocked and enough units are free."""
        return self._conditional_update(
            slot_id,
            [
                CapacitySlot.is_blocked.is_(False),
                self._available_expr() >= count,
                CapacitySlot.slot_datetime > now,
            ],
            {"current_bookings": CapacitySlot.current_bookings + count},
        )

    def try_release(self, slot_id: str, count: int) -> bool:
        """current_bookings -= count iff at least ``count`` are booked."""
        return self._conditional_update(
            slot_id,
            [CapacitySlot.current_bookings >= count],
            {"current_bookings": CapacitySlot.current_bookings - count},
        )

    def try_block(self, slot_id: str, count: int, reason: Optional[str]) -> bool:
        """blocked_slots += count iff enough units are free."""
        values: Dict[str, Any] = {"blocked_slots": CapacitySlot.blocked_slots + count}
        if reason:
            values["block_reason"] = reason
        return self._conditional_update(slot_id, [self._available_expr() >= count], values)

    def try_unblock(self, slot_id: str, count: int) -> bool:
        """blocked_slots -= count iff at least ``count`` are blocked."""
        return self._conditional_update(
            slot_id,
            [CapacitySlot.blocked_slots >= count],
            {"blocked_slots": CapacitySlot.blocked_slots - count},
        )

    def try_adjust_capacity(self, slot_id: str, new_max: int) -> bool:
        """max_capacity = new_max iff it still covers current bookings plus blocks."""
        return self._conditional_update(
            slot_id,
            [CapacitySlot.current_bookings + CapacitySlot.blocked_slots <= new_max],
            {"max_capacity": new_max},
        )

    def set_blocked(self, slot_id: str, blocked: bool, reason: Optional[str] = None) -> bool:
        return self._conditional_update(
            slot_id, [], {"is_blocked": blocked, "block_reason": reason if blocked else None}
        )

    def delete_unused_before(self, cutoff: datetime) -> int:
        """Delete slots dated before ``cutoff`` that never held a booking."""
        try:
            deleted = (
                self.db.query(CapacitySlot)
                .filter(CapacitySlot.slot_datetime < cutoff, CapacitySlot.current_bookings == 0)
                .delete(synchronize_session=False)
            )
            self.db.flush()
            return int(deleted)
        except SQLAlchemyError as e:
            self.logger.error(f"Error cleaning up capacity slots before {cutoff}: {str(e)}")
            raise RepositoryException(f"Failed to clean up capacity slots: {str(e)}")
