# backend/booking_engine/repositories/venue_window_repository.py
"""
Venue window repository.

Windows are loaded per location and filtered by schedule in Python
(``VenueAvailabilityWindow.covers_date``) because a location rarely has more
than a handful of them.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.venue import VenueAvailabilityWindow
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class VenueWindowRepository(BaseRepository[VenueAvailabilityWindow]):
    def __init__(self, db: Session):
        super().__init__(db, VenueAvailabilityWindow)
        self.logger = logging.getLogger(__name__)

    def get_location_windows(
        self,
        location_id: str,
        active_only: bool = True,
        exclude_id: Optional[str] = None,
    ) -> List[VenueAvailabilityWindow]:
        """
        Windows of a location.

        Args:
            location_id: Service location
            active_only: Skip inactive windows
            exclude_id: Window to leave out (the one being edited)
        """
        try:
            query = self.db.query(VenueAvailabilityWindow).filter(
                VenueAvailabilityWindow.service_location_id == location_id
            )
            if active_only:
                query = query.filter(VenueAvailabilityWindow.is_active.is_(True))
            if exclude_id:
                query = query.filter(VenueAvailabilityWindow.id != exclude_id)
            return cast(
                List[VenueAvailabilityWindow],
                query.order_by(VenueAvailabilityWindow.earliest_access).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting venue windows for location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get venue windows: {str(e)}")
