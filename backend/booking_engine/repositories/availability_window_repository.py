# backend/booking_engine/repositories/availability_window_repository.py
"""
Service availability window repository.

Windows and per-date exceptions for a service. A window or exception with a
NULL location applies to every location of the service.
"""

from datetime import date
import logging
from typing import List, Optional, cast

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability_window import ServiceAvailabilityException, ServiceAvailabilityWindow
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityWindowRepository(BaseRepository[ServiceAvailabilityWindow]):
    """Data access for service windows and their exceptions."""

    def __init__(self, db: Session):
        super().__init__(db, ServiceAvailabilityWindow)
        self.logger = logging.getLogger(__name__)

    def get_service_windows(
        self,
        service_id: str,
        location_id: Optional[str] = None,
        bookable_only: bool = True,
    ) -> List[ServiceAvailabilityWindow]:
        """
        Windows of a service, optionally narrowed to one location.

        Args:
            service_id: Service whose windows to load
            location_id: When set, windows for this location plus location-less ones
            bookable_only: Only active and bookable windows

        Returns:
            Windows ordered by start time
        """
        try:
            query = self.db.query(ServiceAvailabilityWindow).filter(
                ServiceAvailabilityWindow.service_id == service_id
            )
            if location_id:
                query = query.filter(
                    or_(
                        ServiceAvailabilityWindow.service_location_id == location_id,
                        ServiceAvailabilityWindow.service_location_id.is_(None),
                    )
                )
            if bookable_only:
                query = query.filter(
                    ServiceAvailabilityWindow.is_active.is_(True),
                    ServiceAvailabilityWindow.is_bookable.is_(True),
                )
            return cast(
                List[ServiceAvailabilityWindow],
                query.order_by(ServiceAvailabilityWindow.start_time).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting windows for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get service windows: {str(e)}")

    def get_exceptions(
        self,
        service_id: str,
        start_date: date,
        end_date: date,
        location_id: Optional[str] = None,
    ) -> List[ServiceAvailabilityException]:
        """Active exceptions of a service dated within [start_date, end_date]."""
        try:
            query = self.db.query(ServiceAvailabilityException).filter(
                ServiceAvailabilityException.service_id == service_id,
                ServiceAvailabilityException.exception_date >= start_date,
                ServiceAvailabilityException.exception_date <= end_date,
                ServiceAvailabilityException.is_active.is_(True),
            )
            if location_id:
                query = query.filter(
                    or_(
                        ServiceAvailabilityException.service_location_id == location_id,
                        ServiceAvailabilityException.service_location_id.is_(None),
                    )
                )
            return cast(List[ServiceAvailabilityException], query.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting exceptions for service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get availability exceptions: {str(e)}")

    def create_exception(self, **kwargs) -> ServiceAvailabilityException:
        try:
            exception = ServiceAvailabilityException(**kwargs)
            self.db.add(exception)
            self.db.flush()
            return exception
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating availability exception: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create availability exception: {str(e)}")
