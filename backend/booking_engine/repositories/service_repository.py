# backend/booking_engine/repositories/service_repository.py
"""
Service configuration repository.

Read access to services, locations and packages. These rows are owned by
the catalog side of the platform; the engine never writes them.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.service import Service, ServiceLocation, ServicePackage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ServiceRepository(BaseRepository[Service]):
    def __init__(self, db: Session):
        super().__init__(db, Service)
        self.logger = logging.getLogger(__name__)

    def get_location(self, location_id: str) -> Optional[ServiceLocation]:
        try:
            return self.db.get(ServiceLocation, location_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting service location {location_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve ServiceLocation: {str(e)}")

    def get_package(self, package_id: str) -> Optional[ServicePackage]:
        try:
            return self.db.get(ServicePackage, package_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting service package {package_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve ServicePackage: {str(e)}")
