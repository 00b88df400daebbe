# backend/booking_engine/services/availability_window_service.py
"""
Availability Window Service for the booking engine

Administrative writes for service availability windows and their per-date
exceptions. Configuration is validated completely before anything is
written; a malformed window raises ConfigurationError and is never
persisted.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.exceptions import ConfigurationError, NotFoundException
from ..models.availability_window import ServiceAvailabilityException, ServiceAvailabilityWindow
from ..repositories import RepositoryFactory
from ..repositories.availability_window_repository import AvailabilityWindowRepository
from ..repositories.service_repository import ServiceRepository
from ..schemas._strict_base import column_values, parse_request
from ..schemas.availability import (
    AvailabilityExceptionCreate,
    ServiceWindowCreate,
    ServiceWindowUpdate,
)
from .base import BaseService, Clock
from .window_resolver import validate_window_config

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)


class AvailabilityWindowService(BaseService):
    """Create, update and delete service windows; add exceptions."""

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        window_repository: Optional[AvailabilityWindowRepository] = None,
        service_repository: Optional[ServiceRepository] = None,
    ):
        super().__init__(db, cache, clock)
        self.window_repository = (
            window_repository or RepositoryFactory.create_availability_window_repository(db)
        )
        self.service_repository = service_repository or RepositoryFactory.create_service_repository(db)

    def _require_service(self, service_id: str) -> None:
        if self.service_repository.get_by_id(service_id) is None:
            raise NotFoundException(f"Service {service_id} not found", code="SERVICE_NOT_FOUND")

    def _get_window_or_404(self, window_id: str) -> ServiceAvailabilityWindow:
        window = self.window_repository.get_by_id(window_id)
        if window is None:
            raise NotFoundException(
                f"Availability window {window_id} not found", code="WINDOW_NOT_FOUND"
            )
        return window

    def _invalidate_for(self, service_id: str, location_id: Optional[str]) -> None:
        self.invalidate_service(service_id)
        self.invalidate_location(location_id)

    def get_service_windows(
        self, service_id: str, location_id: Optional[str] = None, bookable_only: bool = False
    ) -> List[ServiceAvailabilityWindow]:
        return self.window_repository.get_service_windows(service_id, location_id, bookable_only)

    @BaseService.measure_operation("create_window")
    def create_window(
        self, data: Union[ServiceWindowCreate, Dict[str, Any]]
    ) -> ServiceAvailabilityWindow:
        """
        Create a service availability window.

        Raises:
            ConfigurationError: Malformed window (durations, times, pattern)
            NotFoundException: Unknown service
        """
        request = parse_request(ServiceWindowCreate, data, ConfigurationError)
        validate_window_config(request)
        self._require_service(request.service_id)

        with self.transaction():
            window = self.window_repository.create(**column_values(request))
            self._invalidate_for(window.service_id, window.service_location_id)

        self.log_operation(
            "create_window", window_id=window.id, service_id=window.service_id
        )
        return window

    @BaseService.measure_operation("update_window")
    def update_window(
        self, window_id: str, data: Union[ServiceWindowUpdate, BaseModel, Dict[str, Any]]
    ) -> ServiceAvailabilityWindow:
        """
        Apply changes to a window.

        The provided fields are merged over the stored row and the result is
        validated as a complete window before anything is written.
        """
        window = self._get_window_or_404(window_id)
        if isinstance(data, BaseModel):
            changes = data.model_dump(exclude_unset=True)
        else:
            changes = dict(data)
        changes.pop("service_id", None)

        merged: Dict[str, Any] = {
            name: getattr(window, name) for name in ServiceWindowCreate.model_fields
        }
        merged.update(changes)
        request = parse_request(ServiceWindowCreate, merged, ConfigurationError)
        validate_window_config(request)

        previous_location = window.service_location_id
        with self.transaction():
            updated = self.window_repository.update(
                window_id, **column_values(request, exclude={"service_id"})
            )
            self._invalidate_for(window.service_id, previous_location)
            if request.service_location_id != previous_location:
                self.invalidate_location(request.service_location_id)

        self.logger.info(f"Updated availability window {window_id} ({sorted(changes)})")
        return updated or window

    @BaseService.measure_operation("delete_window")
    def delete_window(self, window_id: str) -> bool:
        window = self._get_window_or_404(window_id)
        service_id = window.service_id
        location_id = window.service_location_id
        with self.transaction():
            deleted = self.window_repository.delete(window_id)
            self._invalidate_for(service_id, location_id)
        self.logger.info(f"Deleted availability window {window_id} of service {service_id}")
        return deleted

    @BaseService.measure_operation("add_exception")
    def add_exception(
        self, data: Union[AvailabilityExceptionCreate, Dict[str, Any]]
    ) -> ServiceAvailabilityException:
        """
        Add a blocked day, custom hours or special pricing for one date.

        Raises:
            ConfigurationError: Missing fields for the exception type
            NotFoundException: Unknown service
        """
        request = parse_request(AvailabilityExceptionCreate, data, ConfigurationError)
        self._require_service(request.service_id)

        with self.transaction():
            exception = self.window_repository.create_exception(**column_values(request))
            self._invalidate_for(request.service_id, request.service_location_id)

        self.logger.info(
            f"Added {request.exception_type.value} exception for service {request.service_id} "
            f"on {request.exception_date}"
        )
        return exception
