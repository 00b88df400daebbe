# backend/booking_engine/models/capacity_slot.py
"""
Capacity slot model.

One row per (service, location, exact slot datetime), created lazily the first
time a slot is referenced. Counter changes go through CapacitySlotRepository,
which performs them as conditional UPDATEs; the properties here are read-side
helpers over whatever values were last loaded.
"""

from datetime import datetime
import logging
from typing import Any, List

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import CapacityStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)

NEARLY_FULL_THRESHOLD = 80.0


class CapacitySlot(Base):
    """Reservations versus capacity for a single slot datetime."""

    __tablename__ = "booking_capacity_slots"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False, index=True)
    service_location_id = Column(String(26), ForeignKey("service_locations.id"), nullable=True)
    slot_datetime = Column(DateTime, nullable=False, index=True)

    max_capacity = Column(Integer, nullable=False, default=1)
    current_bookings = Column(Integer, nullable=False, default=0)
    blocked_slots = Column(Integer, nullable=False, default=0)
    is_blocked = Column(Boolean, nullable=False, default=False)
    block_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    service = relationship("Service")

    __table_args__ = (
        UniqueConstraint(
            "service_id",
            "service_location_id",
            "slot_datetime",
            name="unique_capacity_slot",
        ),
        # unique_capacity_slot treats NULL locations as distinct
        Index(
            "unique_capacity_slot_without_location",
            "service_id",
            "slot_datetime",
            unique=True,
            sqlite_where=text("service_location_id IS NULL"),
            postgresql_where=text("service_location_id IS NULL"),
        ),
        Index("idx_capacity_slots_lookup", "service_id", "service_location_id", "slot_datetime"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("max_capacity", 1)
        kwargs.setdefault("current_bookings", 0)
        kwargs.setdefault("blocked_slots", 0)
        kwargs.setdefault("is_blocked", False)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return (
            f"<CapacitySlot {self.slot_datetime}: {self.current_bookings}/{self.max_capacity} "
            f"(blocked {self.blocked_slots})>"
        )

    @property
    def available_slots(self) -> int:
        return max(0, self.max_capacity - self.current_bookings - self.blocked_slots)

    @property
    def utilization_percentage(self) -> float:
        if not self.max_capacity or self.max_capacity <= 0:
            return 0.0
        return round(self.current_bookings / self.max_capacity * 100, 1)

    @property
    def status(self) -> CapacityStatus:
        if self.is_blocked:
            return CapacityStatus.BLOCKED
        if self.available_slots <= 0:
            return CapacityStatus.FULL
        if self.current_bookings == 0:
            return CapacityStatus.AVAILABLE
        return CapacityStatus.PARTIAL

    def is_upcoming(self, now: datetime) -> bool:
        return self.slot_datetime > now

    def is_available(self, count: int = 1) -> bool:
        """True when ``count`` more units fit and the slot is not blocked."""
        return not self.is_blocked and self.available_slots >= count

    def can_book(self, now: datetime, count: int = 1) -> bool:
        return self.is_available(count) and self.is_upcoming(now)

    def get_warnings(self, nearly_full_threshold: float = NEARLY_FULL_THRESHOLD) -> List[str]:
        warnings: List[str] = []
        if self.is_blocked:
            warnings.append(f"Slot is blocked: {self.block_reason or 'no reason given'}")
        if self.available_slots == 0 and not self.is_blocked:
            warnings.append("Slot is fully booked")
        elif self.utilization_percentage > nearly_full_threshold:
            warnings.append(f"Slot is nearly full ({self.utilization_percentage}% utilized)")
        return warnings
