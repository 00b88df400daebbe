# backend/booking_engine/repositories/amenity_repository.py
"""
Venue amenity repository.

Amenities are listed in (sort_order, name) order everywhere so matching and
suggestions are deterministic.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import AmenityType
from ..core.exceptions import RepositoryException
from ..models.venue import VenueAmenity
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AmenityRepository(BaseRepository[VenueAmenity]):
    """Data access for venue amenities."""

    def __init__(self, db: Session):
        super().__init__(db, VenueAmenity)
        self.logger = logging.getLogger(__name__)

    def get_location_amenities(
        self,
        location_id: str,
        active_only: bool = True,
        amenity_type: Optional[str] = None,
    ) -> List[VenueAmenity]:
        try:
            query = self.db.query(VenueAmenity).filter(
                VenueAmenity.service_location_id == location_id
            )
            if active_only:
                query = query.filter(VenueAmenity.is_active.is_(True))
            if amenity_type:
                query = query.filter(VenueAmenity.amenity_type == amenity_type)
            return cast(
                List[VenueAmenity],
                query.order_by(VenueAmenity.sort_order, VenueAmenity.name).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting amenities for location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to get amenities: {str(e)}")

    def find_duplicate(
        self,
        location_id: str,
        amenity_type: str,
        name: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[VenueAmenity]:
        """An amenity with the same (location, type, name), other than ``exclude_id``."""
        try:
            query = self.db.query(VenueAmenity).filter(
                VenueAmenity.service_location_id == location_id,
                VenueAmenity.amenity_type == amenity_type,
                VenueAmenity.name == name,
            )
            if exclude_id:
                query = query.filter(VenueAmenity.id != exclude_id)
            return cast(Optional[VenueAmenity], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking duplicate amenity {name}: {str(e)}")
            raise RepositoryException(f"Failed to check duplicate amenity: {str(e)}")

    def get_max_sort_order(self, location_id: str, amenity_type: Optional[str] = None) -> Optional[int]:
        query = self.db.query(func.max(VenueAmenity.sort_order)).filter(
            VenueAmenity.service_location_id == location_id
        )
        if amenity_type:
            query = query.filter(VenueAmenity.amenity_type == amenity_type)
        return cast(Optional[int], self._execute_scalar(query))

    def get_suggestion_candidates(self, location_id: str, limit: int = 5) -> List[VenueAmenity]:
        """Active non-restriction amenities, first ``limit`` by sort order."""
        query = (
            self.db.query(VenueAmenity)
            .filter(
                VenueAmenity.service_location_id == location_id,
                VenueAmenity.is_active.is_(True),
                VenueAmenity.amenity_type != AmenityType.RESTRICTION.value,
            )
            .order_by(VenueAmenity.sort_order, VenueAmenity.name)
            .limit(limit)
        )
        return self._execute_query(query)
