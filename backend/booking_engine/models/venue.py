# backend/booking_engine/models/venue.py
"""
Venue-level models.

Classes:
    VenueAvailabilityWindow: Operating constraints of a location (access
        hours, quiet hours, concurrent event limit, maintenance blocks)
    VenueAmenity: Equipment, furniture, infrastructure, services and
        restrictions offered at a location
"""

from datetime import date
import logging
from typing import Any, Optional

from sqlalchemy import (
    JSON,
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
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import AmenityType, VenueWindowType
from ..core.ulid_helper import generate_ulid
from ..database import Base
from ..utils.intervals import day_of_week_index

logger = logging.getLogger(__name__)


class VenueAvailabilityWindow(Base):
    """Operating window of a venue (distinct from a service's booking window)."""

    __tablename__ = "venue_availability_windows"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_location_id = Column(
        String(26), ForeignKey("service_locations.id"), nullable=False, index=True
    )
    window_type = Column(String(20), nullable=False, default=VenueWindowType.REGULAR.value)

    # Schedule dimension: a specific date, a date range, or a weekday
    day_of_week = Column(Integer, nullable=True)
    specific_date = Column(Date, nullable=True)
    date_range_start = Column(Date, nullable=True)
    date_range_end = Column(Date, nullable=True)

    earliest_access = Column(Time, nullable=True)
    latest_departure = Column(Time, nullable=True)
    quiet_hours_start = Column(Time, nullable=True)
    quiet_hours_end = Column(Time, nullable=True)

    max_concurrent_events = Column(Integer, nullable=False, default=1)
    min_advance_booking_hours = Column(Integer, nullable=True)
    max_advance_booking_days = Column(Integer, nullable=True)

    restrictions = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    location = relationship("ServiceLocation", back_populates="venue_windows")

    __table_args__ = (
        CheckConstraint("max_concurrent_events >= 1", name="check_venue_window_concurrency"),
        Index("idx_venue_windows_location_active", "service_location_id", "is_active"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("window_type", VenueWindowType.REGULAR.value)
        kwargs.setdefault("max_concurrent_events", 1)
        kwargs.setdefault("is_active", True)
        super().__init__(**kwargs)

    @property
    def is_maintenance(self) -> bool:
        return self.window_type == VenueWindowType.MAINTENANCE.value

    @property
    def is_recurring(self) -> bool:
        """Weekday-only schedule (no date bounds)."""
        return (
            self.day_of_week is not None
            and self.specific_date is None
            and self.date_range_start is None
        )

    def covers_date(self, on_date: date) -> bool:
        """Whether this window's schedule includes ``on_date`` (ignores type and activity)."""
        if self.specific_date is not None:
            return self.specific_date == on_date
        if self.date_range_start is not None and self.date_range_end is not None:
            if not self.date_range_start <= on_date <= self.date_range_end:
                return False
            return self.day_of_week is None or self.day_of_week == day_of_week_index(on_date)
        if self.day_of_week is not None:
            return self.day_of_week == day_of_week_index(on_date)
        return False

    def __repr__(self) -> str:
        return f"<VenueAvailabilityWindow {self.id}: {self.window_type} {self.schedule_label()}>"

    def schedule_label(self) -> Optional[str]:
        if self.specific_date is not None:
            return self.specific_date.isoformat()
        if self.date_range_start is not None:
            return f"{self.date_range_start}..{self.date_range_end}"
        if self.day_of_week is not None:
            return f"dow={self.day_of_week}"
        return None


class VenueAmenity(Base):
    """An amenity a venue can provide for an event."""

    __tablename__ = "venue_amenities"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_location_id = Column(
        String(26), ForeignKey("service_locations.id"), nullable=False, index=True
    )
    amenity_type = Column(String(20), nullable=False, default=AmenityType.EQUIPMENT.value)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    included_in_booking = Column(Boolean, nullable=False, default=False)
    additional_cost = Column(Integer, nullable=False, default=0)  # pence
    quantity_available = Column(Integer, nullable=False, default=1)

    requires_advance_notice = Column(Boolean, nullable=False, default=False)
    notice_hours_required = Column(Integer, nullable=False, default=0)

    specifications = Column(JSON, nullable=True)
    restrictions = Column(JSON, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    location = relationship("ServiceLocation", back_populates="amenities")

    __table_args__ = (
        UniqueConstraint(
            "service_location_id", "amenity_type", "name", name="unique_amenity_name_per_type"
        ),
        CheckConstraint("quantity_available >= 1", name="check_amenity_quantity"),
        CheckConstraint("notice_hours_required >= 0", name="check_amenity_notice_hours"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("amenity_type", AmenityType.EQUIPMENT.value)
        kwargs.setdefault("included_in_booking", False)
        kwargs.setdefault("additional_cost", 0)
        kwargs.setdefault("quantity_available", 1)
        kwargs.setdefault("requires_advance_notice", False)
        kwargs.setdefault("notice_hours_required", 0)
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("sort_order", 0)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<VenueAmenity {self.id}: {self.amenity_type}/{self.name}>"
