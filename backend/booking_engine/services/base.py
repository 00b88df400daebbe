# backend/booking_engine/services/base.py
"""
Common plumbing for the booking engine services.

Every service gets a session, an optional CacheService, a clock and a
per-class logger. Writes go through ``transaction()``; public operations are
timed with ``@BaseService.measure_operation`` and exported to Prometheus.
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

F = TypeVar("F", bound=Callable[..., Any])


def _export_timing(
    service_name: str, operation_name: str, elapsed: float, success: bool, error_type: Optional[str]
) -> None:
    try:
        prometheus_metrics.record_service_operation(
            service=service_name,
            operation=operation_name,
            duration=elapsed,
            status="success" if success else "error",
            error_type=error_type,
        )
    except ValueError as e:
        logger.debug(f"Metrics not recorded for {service_name}.{operation_name}: {e}")


class BaseService:
    """
    Base class for the engine's services.

    Subclasses receive collaborators explicitly; nothing is looked up from
    module globals except ``settings``.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            db: Session owned by the request (or test)
            cache: Shared CacheService; None disables caching
            clock: Callable returning the current naive local time
        """
        self.db = db
        self.cache = cache
        self._clock: Clock = clock or datetime.now
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run a unit of work: commit on success, roll back on any error.

        SQLAlchemy errors surface as ServiceException; domain exceptions are
        re-raised unchanged after the rollback.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Rolling back after database error: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}")
        except Exception as e:
            self.logger.error(f"Rolling back after {type(e).__name__}: {str(e)}")
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and export it as ``operation_name``.

        Calls slower than ``settings.slow_operation_threshold_seconds`` are
        logged at WARNING.
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                started = time.perf_counter()
                error_type = None

                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > settings.slow_operation_threshold_seconds:
                        self.logger.warning(f"{operation_name} took {elapsed:.2f}s")
                    _export_timing(
                        self.__class__.__name__, operation_name, elapsed, error_type is None, error_type
                    )

            return cast(F, wrapper)

        return decorator

    def invalidate_location(self, location_id: Optional[str]) -> int:
        """
        Drop every cached availability entry tagged with a location.

        Called inside the transaction that writes the change, so a committed
        booking or window edit is never followed by a stale read.
        """
        if not self.cache or not location_id:
            return 0

        count = self.cache.invalidate_tag("location", location_id)
        self.logger.debug(f"Invalidated {count} cached entries for location {location_id}")
        return count

    def invalidate_service(self, service_id: Optional[str]) -> int:
        """Drop every cached slot listing tagged with a service."""
        if not self.cache or not service_id:
            return 0

        count = self.cache.invalidate_tag("service", service_id)
        self.logger.debug(f"Invalidated {count} cached entries for service {service_id}")
        return count

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
