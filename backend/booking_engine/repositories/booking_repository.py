# backend/booking_engine/repositories/booking_repository.py
"""
Booking Repository for the booking engine

Read queries over bookings for overlap, capacity, impact and statistics
checks. Weekday filtering (day_of_week, 0 = Sunday) is applied in Python by
the callers because SQL weekday functions differ between dialects.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import List, Optional, Sequence, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_location_bookings_overlapping(
        self,
        location_id: str,
        start: datetime,
        end: datetime,
        exclude_statuses: Sequence[str] = (BookingStatus.CANCELLED.value,),
    ) -> List[Booking]:
        """
        Bookings at a location whose [scheduled_at, ends_at) overlaps [start, end).

        Args:
            location_id: Service location
            start: Range start
            end: Range end (exclusive)
            exclude_statuses: Statuses to leave out

        Returns:
            Bookings ordered by start time
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.service_location_id == location_id,
                Booking.scheduled_at < end,
                Booking.ends_at > start,
            )
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return cast(List[Booking], query.order_by(Booking.scheduled_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get location bookings: {str(e)}")

    def get_service_bookings_overlapping(
        self,
        service_id: str,
        start: datetime,
        end: datetime,
        location_id: Optional[str] = None,
        exclude_statuses: Sequence[str] = (),
    ) -> List[Booking]:
        """Bookings of a service (optionally at one location) overlapping [start, end)."""
        try:
            query = self.db.query(Booking).filter(
                Booking.service_id == service_id,
                Booking.scheduled_at < end,
                Booking.ends_at > start,
            )
            if location_id:
                query = query.filter(Booking.service_location_id == location_id)
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return cast(List[Booking], query.order_by(Booking.scheduled_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get service bookings: {str(e)}")

    def count_service_bookings_starting_between(
        self,
        service_id: str,
        start: datetime,
        end: datetime,
        exclude_statuses: Sequence[str] = (),
    ) -> int:
        """Count bookings of a service whose start falls in [start, end)."""
        try:
            query = self.db.query(Booking).filter(
                Booking.service_id == service_id,
                Booking.scheduled_at >= start,
                Booking.scheduled_at < end,
            )
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return query.count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting bookings for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to count service bookings: {str(e)}")

    def get_location_bookings_starting_between(
        self,
        location_id: str,
        start: datetime,
        end: datetime,
        statuses: Optional[Sequence[str]] = None,
        exclude_statuses: Sequence[str] = (),
    ) -> List[Booking]:
        """Bookings at a location whose start falls in [start, end)."""
        try:
            query = self.db.query(Booking).filter(
                Booking.service_location_id == location_id,
                Booking.scheduled_at >= start,
                Booking.scheduled_at < end,
            )
            if statuses is not None:
                query = query.filter(Booking.status.in_(list(statuses)))
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return cast(List[Booking], query.order_by(Booking.scheduled_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get location bookings: {str(e)}")

    def get_location_bookings_on_date(
        self,
        location_id: str,
        on_date: date,
        exclude_statuses: Sequence[str] = (BookingStatus.CANCELLED.value,),
    ) -> List[Booking]:
        """Bookings at a location that start on ``on_date``."""
        day_start = datetime.combine(on_date, time.min)
        return self.get_location_bookings_starting_between(
            location_id,
            day_start,
            day_start + timedelta(days=1),
            exclude_statuses=exclude_statuses,
        )

    def get_upcoming_location_bookings(
        self,
        location_id: str,
        now: datetime,
        statuses: Optional[Sequence[str]] = None,
        exclude_statuses: Sequence[str] = (),
    ) -> List[Booking]:
        """Bookings at a location starting after ``now``."""
        try:
            query = self.db.query(Booking).filter(
                Booking.service_location_id == location_id,
                Booking.scheduled_at > now,
            )
            if statuses is not None:
                query = query.filter(Booking.status.in_(list(statuses)))
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return cast(List[Booking], query.order_by(Booking.scheduled_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting upcoming bookings for {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get upcoming bookings: {str(e)}")

    def get_location_bookings(
        self,
        location_id: str,
        exclude_statuses: Sequence[str] = (),
    ) -> List[Booking]:
        """Every booking at a location (used by window statistics)."""
        try:
            query = self.db.query(Booking).filter(Booking.service_location_id == location_id)
            if exclude_statuses:
                query = query.filter(~Booking.status.in_(list(exclude_statuses)))
            return cast(List[Booking], query.order_by(Booking.scheduled_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get location bookings: {str(e)}")
