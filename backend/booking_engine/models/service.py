# backend/booking_engine/models/service.py
"""
Service configuration read models.

Service, ServiceLocation and ServicePackage are owned by the catalog side of
the platform; the engine only reads capacity defaults, advance-booking
constraints and package composition from them.
"""

import logging
from typing import List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class Service(Base):
    """A bookable service with its default scheduling constraints."""

    __tablename__ = "services"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    base_price = Column(Integer, nullable=False, default=0)  # pence
    default_capacity = Column(Integer, nullable=False, default=1)
    min_advance_booking_hours = Column(Integer, nullable=True)
    max_advance_booking_days = Column(Integer, nullable=True)
    max_bookings_per_day = Column(Integer, nullable=True)
    max_bookings_per_week = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    locations = relationship("ServiceLocation", back_populates="service")
    availability_windows = relationship(
        "ServiceAvailabilityWindow", back_populates="service", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("default_capacity >= 1", name="check_service_default_capacity"),
        CheckConstraint("duration_minutes > 0", name="check_service_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Service {self.id}: {self.name}>"


class ServiceLocation(Base):
    """A venue or room at which services are delivered."""

    __tablename__ = "service_locations"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    max_capacity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    service = relationship("Service", back_populates="locations")
    venue_windows = relationship(
        "VenueAvailabilityWindow", back_populates="location", cascade="all, delete-orphan"
    )
    amenities = relationship("VenueAmenity", back_populates="location", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<ServiceLocation {self.id}: {self.name}>"


class ServicePackage(Base):
    """A bundle of services that must all be bookable at the same start time."""

    __tablename__ = "service_packages"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    name = Column(String(255), nullable=False)
    service_ids = Column(JSON, nullable=False, default=list)
    package_price = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def required_service_ids(self) -> List[str]:
        return list(self.service_ids or [])

    def __repr__(self) -> str:
        return f"<ServicePackage {self.id}: {self.name} ({len(self.required_service_ids)} services)>"
