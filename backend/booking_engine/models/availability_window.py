# backend/booking_engine/models/availability_window.py
"""
Service availability models.

Classes:
    ServiceAvailabilityWindow: Recurring or date-bound period in which a
        service can be booked, and how that period subdivides into slots
    ServiceAvailabilityException: Per-date override (blocked day, custom
        hours or special pricing) layered on top of the windows
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import PriceModifierType, WindowPattern
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class ServiceAvailabilityWindow(Base):
    """
    When a service is operable and how slots subdivide that period.

    day_of_week uses 0 = Sunday ... 6 = Saturday. A window whose end_time is
    earlier than its start_time runs overnight into the next day.
    """

    __tablename__ = "service_availability_windows"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False, index=True)
    service_location_id = Column(
        String(26), ForeignKey("service_locations.id"), nullable=True, index=True
    )
    title = Column(String(255), nullable=True)

    pattern = Column(String(20), nullable=False, default=WindowPattern.WEEKLY.value)
    day_of_week = Column(Integer, nullable=True)
    specific_date = Column(Date, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    max_bookings = Column(Integer, nullable=False, default=1)
    slot_duration_minutes = Column(Integer, nullable=False, default=60)
    break_duration_minutes = Column(Integer, nullable=False, default=0)

    min_advance_booking_hours = Column(Integer, nullable=True)
    max_advance_booking_days = Column(Integer, nullable=True)

    price_modifier = Column(Integer, nullable=False, default=0)
    price_modifier_type = Column(String(20), nullable=False, default=PriceModifierType.FIXED.value)

    is_active = Column(Boolean, nullable=False, default=True)
    is_bookable = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    service = relationship("Service", back_populates="availability_windows")

    __table_args__ = (
        CheckConstraint("max_bookings >= 1", name="check_window_max_bookings"),
        CheckConstraint("slot_duration_minutes > 0", name="check_window_slot_duration"),
        CheckConstraint("break_duration_minutes >= 0", name="check_window_break_duration"),
        Index("idx_service_windows_service_location", "service_id", "service_location_id"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("pattern", WindowPattern.WEEKLY.value)
        kwargs.setdefault("max_bookings", 1)
        kwargs.setdefault("slot_duration_minutes", 60)
        kwargs.setdefault("break_duration_minutes", 0)
        kwargs.setdefault("price_modifier", 0)
        kwargs.setdefault("price_modifier_type", PriceModifierType.FIXED.value)
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("is_bookable", True)
        super().__init__(**kwargs)

    @property
    def is_overnight(self) -> bool:
        return self.end_time < self.start_time

    def __repr__(self) -> str:
        return (
            f"<ServiceAvailabilityWindow {self.id}: {self.pattern} "
            f"{self.start_time}-{self.end_time}>"
        )


class ServiceAvailabilityException(Base):
    """A per-date override for a service's availability."""

    __tablename__ = "service_availability_exceptions"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False, index=True)
    service_location_id = Column(String(26), ForeignKey("service_locations.id"), nullable=True)
    exception_date = Column(Date, nullable=False, index=True)
    exception_type = Column(String(20), nullable=False)

    # custom_hours
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    # special_pricing
    price_modifier = Column(Integer, nullable=True)
    price_modifier_type = Column(String(20), nullable=True)

    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    def __init__(self, **kwargs):
        kwargs.setdefault("is_active", True)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<ServiceAvailabilityException {self.exception_date} {self.exception_type}>"
