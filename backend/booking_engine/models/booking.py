# backend/booking_engine/models/booking.py
"""
Booking read/write model.

Bookings are created by the checkout flow. The engine reads them for overlap
and capacity checks and writes only three things: a status change when a
booking is force-cancelled, new times when it is auto-rescheduled, and the
manual review flag.
"""

from datetime import datetime
import logging
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import BookingStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class Booking(Base):
    """A customer booking at a service location."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    booking_reference = Column(String(32), nullable=True, unique=True)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=True, index=True)
    service_location_id = Column(
        String(26), ForeignKey("service_locations.id"), nullable=True, index=True
    )

    scheduled_at = Column(DateTime, nullable=False, index=True)
    ends_at = Column(DateTime, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)
    total_amount = Column(Integer, nullable=False, default=0)  # pence
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    requires_review = Column(Boolean, nullable=False, default=False)
    review_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    service = relationship("Service")
    location = relationship("ServiceLocation")

    __table_args__ = (
        CheckConstraint("ends_at > scheduled_at", name="check_booking_time_order"),
        Index("idx_bookings_location_schedule", "service_location_id", "scheduled_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.CONFIRMED.value
        if self.requires_review is None:
            self.requires_review = False

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: location={self.service_location_id}, "
            f"{self.scheduled_at}-{self.ends_at}, status={self.status}>"
        )

    @property
    def duration_minutes(self) -> int:
        return int((self.ends_at - self.scheduled_at).total_seconds() // 60)

    def cancel(self, reason: Optional[str] = None, when: Optional[datetime] = None) -> None:
        """Cancel this booking."""
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = when or datetime.now()
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} cancelled: {reason or 'no reason given'}")

    def flag_for_review(self, reason: str) -> None:
        self.requires_review = True
        self.review_reason = reason

    def reschedule(self, new_start: datetime, new_end: datetime) -> None:
        """Move the booking to a new time span."""
        self.scheduled_at = new_start
        self.ends_at = new_end

    def is_upcoming(self, now: datetime) -> bool:
        return self.scheduled_at > now
