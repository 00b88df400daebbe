# backend/booking_engine/services/time_slot_service.py
"""
Time Slot Service for the booking engine

Service-level slot engine:
- Available slots per service (windows, exceptions, bookings, capacity)
- Booking time validation with readable error messages
- Slot reservation and release by time or by capacity slot id
- Booking cancellation with capacity release
- Package slots (start times free for every service in a package)

Slot listings are cached per (service, location, range, duration, options)
and tagged by service and location so any write to either drops them.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SLOT_EXCLUDED_STATUSES, BookingStatus, ExceptionType
from ..core.exceptions import NotFoundException, ValidationException
from ..models.booking import Booking
from ..models.capacity_slot import CapacitySlot
from ..models.service import Service
from ..repositories import RepositoryFactory
from ..repositories.availability_window_repository import AvailabilityWindowRepository
from ..repositories.booking_repository import BookingRepository
from ..repositories.capacity_slot_repository import CapacitySlotRepository
from ..repositories.service_repository import ServiceRepository
from ..schemas.availability import AvailableSlot, PackageSlot, PriceModifier, SlotQueryOptions
from ..utils.intervals import date_range, overlaps
from .base import BaseService, Clock
from .cache_service import CacheKeyBuilder
from .capacity_service import CapacityService
from .window_resolver import (
    apply_price_modifier,
    generate_slots_for_window,
    is_slot_bookable,
    windows_applicable_on,
)

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)


class TimeSlotService(BaseService):
    """
    Computes bookable slots for a service and manages their reservation.

    Bookings in any status except cancelled and no_show occupy their time.
    By default a single overlapping booking removes a slot; with
    ``SlotQueryOptions.allow_shared_slots`` overlaps are counted against the
    window's max_bookings instead.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        capacity_service: Optional[CapacityService] = None,
        window_repository: Optional[AvailabilityWindowRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        capacity_repository: Optional[CapacitySlotRepository] = None,
        service_repository: Optional[ServiceRepository] = None,
    ):
        super().__init__(db, cache, clock)
        self.window_repository = (
            window_repository or RepositoryFactory.create_availability_window_repository(db)
        )
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.capacity_repository = (
            capacity_repository or RepositoryFactory.create_capacity_slot_repository(db)
        )
        self.service_repository = service_repository or RepositoryFactory.create_service_repository(db)
        self.capacity_service = capacity_service or CapacityService(
            db, cache, clock, capacity_repository=self.capacity_repository
        )

    # Lookups

    def _get_service_or_404(self, service_id: str) -> Service:
        service = self.service_repository.get_by_id(service_id)
        if service is None:
            raise NotFoundException(f"Service {service_id} not found", code="SERVICE_NOT_FOUND")
        return service

    @staticmethod
    def _check_range(start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise ValidationException(
                f"End date {end_date} is before start date {start_date}", code="INVALID_DATE_RANGE"
            )
        days = (end_date - start_date).days + 1
        if days > settings.max_slot_query_days:
            raise ValidationException(
                f"Date range of {days} days exceeds the maximum of {settings.max_slot_query_days}",
                code="DATE_RANGE_TOO_LONG",
                details={"days": days, "max_days": settings.max_slot_query_days},
            )

    # Slot computation

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        service_id: str,
        start_date: date,
        end_date: date,
        location_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        options: Optional[SlotQueryOptions] = None,
    ) -> List[AvailableSlot]:
        """
        Bookable slots of a service in [start_date, end_date], sorted by start.

        Args:
            service_id: Service to compute slots for
            start_date: First date (inclusive)
            end_date: Last date (inclusive)
            location_id: Restrict to one location (windows without a location still apply)
            duration_minutes: Booked length; defaults to each window's slot duration
            options: Query options

        Raises:
            NotFoundException: Unknown service
            ValidationException: Invalid or too long date range
        """
        options = options or SlotQueryOptions()
        self._check_range(start_date, end_date)
        service = self._get_service_or_404(service_id)

        cache_key = None
        if self.cache and options.use_cache:
            cache_key = CacheKeyBuilder.build(
                "service_slots",
                service_id,
                location_id or "all",
                start_date,
                end_date,
                duration_minutes or 0,
                CacheKeyBuilder.hash_complex_key(options.cache_fingerprint()),
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return [AvailableSlot.model_validate(item) for item in cached]

        slots = self._compute_slots(service, start_date, end_date, location_id, duration_minutes, options)

        if cache_key and self.cache:
            tags = [("service", service_id)]
            if location_id:
                tags.append(("location", location_id))
            self.cache.set(
                cache_key,
                [slot.model_dump(mode="json") for slot in slots],
                ttl=settings.service_slots_ttl_seconds,
                tags=tags,
            )
        return slots

    def _compute_slots(
        self,
        service: Service,
        start_date: date,
        end_date: date,
        location_id: Optional[str],
        duration_minutes: Optional[int],
        options: SlotQueryOptions,
    ) -> List[AvailableSlot]:
        now = self.now()
        windows = self.window_repository.get_service_windows(service.id, location_id)
        exceptions_by_date: Dict[date, List[Any]] = defaultdict(list)
        for exception in self.window_repository.get_exceptions(
            service.id, start_date, end_date, location_id
        ):
            exceptions_by_date[exception.exception_date].append(exception)

        range_start = datetime.combine(start_date, time.min)
        # Overnight windows spill into the following day
        range_end = datetime.combine(end_date, time.min) + timedelta(days=2)
        bookings = self.booking_repository.get_service_bookings_overlapping(
            service.id,
            range_start,
            range_end,
            location_id=location_id,
            exclude_statuses=SLOT_EXCLUDED_STATUSES,
        )
        capacity_slots = self.capacity_repository.get_slot_map(
            service.id, location_id, range_start, range_end
        )

        by_start: Dict[datetime, AvailableSlot] = {}
        for on_date in date_range(start_date, end_date):
            day_exceptions = exceptions_by_date.get(on_date, [])
            if any(e.exception_type == ExceptionType.BLOCKED.value for e in day_exceptions):
                self.logger.debug(f"Service {service.id} blocked on {on_date}")
                continue

            custom_hours = next(
                (e for e in day_exceptions if e.exception_type == ExceptionType.CUSTOM_HOURS.value),
                None,
            )
            pricing = next(
                (e for e in day_exceptions if e.exception_type == ExceptionType.SPECIAL_PRICING.value),
                None,
            )

            for window in windows_applicable_on(windows, on_date):
                candidates = generate_slots_for_window(
                    window,
                    on_date,
                    duration_minutes,
                    start_time=custom_hours.start_time if custom_hours else None,
                    end_time=custom_hours.end_time if custom_hours else None,
                )
                modifier = self._price_modifier(window, pricing)

                for candidate in candidates:
                    if candidate.start in by_start:
                        continue
                    overlapping = sum(
                        1
                        for booking in bookings
                        if overlaps(candidate.start, candidate.end, booking.scheduled_at, booking.ends_at)
                    )
                    if overlapping and not options.allow_shared_slots:
                        continue
                    if not is_slot_bookable(
                        window,
                        candidate.start,
                        now,
                        service,
                        current_bookings=overlapping if options.allow_shared_slots else 0,
                    ):
                        continue
                    capacity_slot = capacity_slots.get(candidate.start)
                    if capacity_slot is not None and (
                        capacity_slot.is_blocked or capacity_slot.available_slots <= 0
                    ):
                        continue

                    by_start[candidate.start] = AvailableSlot(
                        start_time=candidate.start,
                        end_time=candidate.end,
                        duration_minutes=candidate.duration_minutes,
                        service_id=service.id,
                        location_id=location_id,
                        window_id=window.id,
                        max_capacity=window.max_bookings,
                        current_bookings=overlapping,
                        price_modifier=modifier,
                        price=apply_price_modifier(
                            service.base_price or 0, modifier.amount, modifier.type.value
                        ),
                    )

        return [by_start[start] for start in sorted(by_start)]

    @staticmethod
    def _price_modifier(window: Any, pricing_exception: Any) -> PriceModifier:
        """Special pricing for the date wins over the window's own modifier."""
        if pricing_exception is not None:
            return PriceModifier(
                amount=pricing_exception.price_modifier or 0,
                type=pricing_exception.price_modifier_type or "fixed",
                reason=pricing_exception.reason,
            )
        if window.price_modifier:
            return PriceModifier(
                amount=window.price_modifier,
                type=window.price_modifier_type,
                reason=window.title,
            )
        return PriceModifier()

    # Validation

    @BaseService.measure_operation("validate_booking_time")
    def validate_booking_time(
        self,
        service_id: str,
        requested_time: datetime,
        location_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> List[str]:
        """
        Check a requested booking time against every rule.

        Returns:
            Error messages; empty when the time can be booked
        """
        service = self._get_service_or_404(service_id)
        now = self.now()
        errors: List[str] = []

        if requested_time < now:
            errors.append("Booking time cannot be in the past")

        min_hours = service.min_advance_booking_hours
        if min_hours is None:
            min_hours = settings.default_min_advance_booking_hours
        max_days = service.max_advance_booking_days
        if max_days is None:
            max_days = settings.default_max_advance_booking_days

        if requested_time < now + timedelta(hours=min_hours):
            errors.append(f"Bookings must be made at least {min_hours} hours in advance")
        if requested_time > now + timedelta(days=max_days):
            errors.append(f"Bookings cannot be made more than {max_days} days in advance")

        day = requested_time.date()
        slots = self.get_available_slots(
            service_id, day, day, location_id=location_id, duration_minutes=duration_minutes
        )
        if not any(slot.start_time == requested_time for slot in slots):
            errors.append("The requested time slot is not available")

        if service.max_bookings_per_day:
            day_start = datetime.combine(day, time.min)
            daily = self.booking_repository.count_service_bookings_starting_between(
                service_id, day_start, day_start + timedelta(days=1), SLOT_EXCLUDED_STATUSES
            )
            if daily >= service.max_bookings_per_day:
                errors.append("Maximum daily bookings limit reached for this service")

        if service.max_bookings_per_week:
            week_start = datetime.combine(day - timedelta(days=day.weekday()), time.min)
            weekly = self.booking_repository.count_service_bookings_starting_between(
                service_id, week_start, week_start + timedelta(days=7), SLOT_EXCLUDED_STATUSES
            )
            if weekly >= service.max_bookings_per_week:
                errors.append("Maximum weekly bookings limit reached for this service")

        return errors

    # Reservation

    @BaseService.measure_operation("reserve_time_slot")
    def reserve_time_slot(
        self, service_id: str, slot_time: datetime, location_id: Optional[str] = None
    ) -> bool:
        """Reserve one unit at ``slot_time``, creating the capacity slot if needed."""
        service = self._get_service_or_404(service_id)
        slot = self.capacity_service.find_or_create(
            service_id, location_id, slot_time, default_max_capacity=service.default_capacity
        )
        reserved = self.capacity_service.reserve(slot, 1)
        if reserved:
            self.log_operation(
                "reserve_time_slot",
                service_id=service_id,
                slot_time=slot_time.isoformat(),
                location_id=location_id,
                remaining_capacity=slot.available_slots,
            )
        return reserved

    @BaseService.measure_operation("release_time_slot")
    def release_time_slot(
        self, service_id: str, slot_time: datetime, location_id: Optional[str] = None
    ) -> bool:
        slot = self.capacity_repository.find_slot(service_id, location_id, slot_time)
        if slot is None or slot.current_bookings <= 0:
            self.logger.info(f"Nothing to release for service {service_id} at {slot_time}")
            return False
        return self.capacity_service.release(slot, 1)

    def _get_capacity_slot_or_404(self, slot_id: str) -> CapacitySlot:
        slot = self.capacity_repository.get_by_id(slot_id)
        if slot is None:
            raise NotFoundException(f"Capacity slot {slot_id} not found", code="SLOT_NOT_FOUND")
        return slot

    def reserve_slot(self, slot_id: str, count: int = 1) -> bool:
        return self.capacity_service.reserve(self._get_capacity_slot_or_404(slot_id), count)

    def release_slot(self, slot_id: str, count: int = 1) -> bool:
        return self.capacity_service.release(self._get_capacity_slot_or_404(slot_id), count)

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking and give its capacity unit back.

        Cancelling an already cancelled booking is a no-op.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        if booking.status == BookingStatus.CANCELLED.value:
            return booking

        with self.transaction():
            booking.cancel(reason, self.now())
            if booking.service_id:
                slot = self.capacity_repository.find_slot(
                    booking.service_id, booking.service_location_id, booking.scheduled_at
                )
                if slot is not None and not self.capacity_repository.try_release(slot.id, 1):
                    self.logger.warning(
                        f"Capacity slot {slot.id} had no booking to release for {booking_id}"
                    )
            self.booking_repository.flush()
            self.invalidate_location(booking.service_location_id)
            self.invalidate_service(booking.service_id)

        self.log_operation("cancel_booking", booking_id=booking_id, reason=reason)
        return booking

    # Packages

    @BaseService.measure_operation("get_package_time_slots")
    def get_package_time_slots(
        self, package_id: str, on_date: date, location_id: Optional[str] = None
    ) -> List[PackageSlot]:
        """Start times on ``on_date`` at which every service of the package is free."""
        package = self.service_repository.get_package(package_id)
        if package is None:
            raise NotFoundException(f"Package {package_id} not found", code="PACKAGE_NOT_FOUND")

        service_ids = package.required_service_ids
        if not service_ids:
            return []

        common: Optional[Set[datetime]] = None
        for service_id in service_ids:
            starts = {
                slot.start_time
                for slot in self.get_available_slots(service_id, on_date, on_date, location_id)
            }
            common = starts if common is None else common & starts
            if not common:
                return []

        return [PackageSlot(start_time=start, services=service_ids) for start in sorted(common or ())]
