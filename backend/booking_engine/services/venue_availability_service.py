# backend/booking_engine/services/venue_availability_service.py
"""
Venue Availability Service for the booking engine

Owns venue availability windows and the venue-level slot engine:
- Window create / update / delete with conflict and booking-impact checks
- Available event slots for a location over a date range
- Public availability calendar with per-day restrictions and a summary

Critical conflicts (anything involving a maintenance window) stop a write
unless ``force`` is set. Bookings hit by a change are reported, and are
resolved only when the caller asks for an impact action.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import ConflictSeverity, ImpactAction
from ..core.exceptions import (
    ConfigurationError,
    DependencyError,
    NotFoundException,
    ValidationException,
    WindowConflictError,
)
from ..models.service import Service
from ..models.venue import VenueAvailabilityWindow
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from ..repositories.service_repository import ServiceRepository
from ..repositories.venue_window_repository import VenueWindowRepository
from ..schemas._strict_base import column_values, parse_request
from ..schemas.availability import SlotQueryOptions
from ..schemas.venue import (
    AvailabilityCalendar,
    CalendarDay,
    CalendarSlot,
    CalendarSummary,
    VenueSlot,
    VenueWindowCreate,
    VenueWindowUpdate,
    WindowChangeResult,
    WindowConflict,
    WindowConflictsReport,
    WindowDeletionResult,
    WindowUsageStats,
)
from ..utils.intervals import date_range, overlaps
from .base import BaseService, Clock
from .cache_service import CacheKeyBuilder
from .venue_impact_analyzer import VenueImpactAnalyzer

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

# Changes worth an INFO line of their own
_SIGNIFICANT_FIELDS = (
    "earliest_access",
    "latest_departure",
    "quiet_hours_start",
    "quiet_hours_end",
    "max_concurrent_events",
    "is_active",
)


class VenueAvailabilityService(BaseService):
    """
    Venue windows and venue-level slot availability.

    Slot listings are cached per (location, range, duration, options) under
    the location tag, which every write to the location invalidates.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        window_repository: Optional[VenueWindowRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        service_repository: Optional[ServiceRepository] = None,
        impact_analyzer: Optional[VenueImpactAnalyzer] = None,
    ):
        super().__init__(db, cache, clock)
        self.window_repository = window_repository or RepositoryFactory.create_venue_window_repository(db)
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.service_repository = service_repository or RepositoryFactory.create_service_repository(db)
        self.impact_analyzer = impact_analyzer or VenueImpactAnalyzer(
            db,
            cache,
            clock,
            window_repository=self.window_repository,
            booking_repository=self.booking_repository,
            slot_finder=self._find_slots,
        )

    # Lookups

    def _require_location(self, location_id: str) -> None:
        if self.service_repository.get_location(location_id) is None:
            raise NotFoundException(
                f"Service location {location_id} not found", code="LOCATION_NOT_FOUND"
            )

    def _get_window_or_404(self, window_id: str) -> VenueAvailabilityWindow:
        window = self.window_repository.get_by_id(window_id)
        if window is None:
            raise NotFoundException(
                f"Venue availability window {window_id} not found", code="VENUE_WINDOW_NOT_FOUND"
            )
        return window

    def get_window(self, window_id: str) -> VenueAvailabilityWindow:
        return self._get_window_or_404(window_id)

    def get_location_windows(
        self, location_id: str, active_only: bool = True
    ) -> List[VenueAvailabilityWindow]:
        return self.window_repository.get_location_windows(location_id, active_only=active_only)

    @staticmethod
    def _raise_on_critical(conflicts: List[WindowConflict], force: bool) -> None:
        critical = [c for c in conflicts if c.severity == ConflictSeverity.CRITICAL]
        if critical and not force:
            raise WindowConflictError([c.model_dump(mode="json") for c in critical])

    # Window writes

    @BaseService.measure_operation("create_venue_window")
    def create_window(
        self, data: Union[VenueWindowCreate, Dict[str, Any]], force: bool = False
    ) -> WindowChangeResult:
        """
        Create a venue availability window.

        Args:
            data: Window definition
            force: Create even when it overlaps a maintenance window

        Returns:
            WindowChangeResult with the new window and any non-critical conflicts

        Raises:
            ConfigurationError: Malformed window
            NotFoundException: Unknown location
            WindowConflictError: Critical overlap and ``force`` not set
        """
        request = parse_request(VenueWindowCreate, data, ConfigurationError)
        self._require_location(request.service_location_id)

        conflicts = self.impact_analyzer.check_overlapping_windows(
            request.service_location_id, request
        )
        self._raise_on_critical(conflicts, force)

        with self.transaction():
            window = self.window_repository.create(**column_values(request))
            self.invalidate_location(window.service_location_id)

        self.log_operation(
            "create_venue_window",
            window_id=window.id,
            location_id=window.service_location_id,
            conflicts=len(conflicts),
        )
        return WindowChangeResult(window=window, conflicts=conflicts)

    @BaseService.measure_operation("update_venue_window")
    def update_window(
        self,
        window_id: str,
        data: Union[VenueWindowUpdate, BaseModel, Dict[str, Any]],
        force: bool = False,
        impact_action: Optional[ImpactAction] = None,
    ) -> WindowChangeResult:
        """
        Apply changes to a venue window.

        The changes are merged over the stored row and validated as a whole.
        Bookings that no longer fit are reported in ``impact``; with an
        ``impact_action`` they are also resolved once the change is saved.

        Raises:
            ConfigurationError: The merged window is malformed
            NotFoundException: Unknown window
            WindowConflictError: Critical overlap and ``force`` not set
        """
        window = self._get_window_or_404(window_id)
        update = parse_request(VenueWindowUpdate, data, ConfigurationError)
        changes = update.model_dump(exclude_unset=True)

        merged: Dict[str, Any] = {name: getattr(window, name) for name in VenueWindowCreate.model_fields}
        merged.update(changes)
        request = parse_request(VenueWindowCreate, merged, ConfigurationError)

        conflicts = self.impact_analyzer.check_overlapping_windows(
            window.service_location_id, request, exclude_window_id=window.id
        )
        self._raise_on_critical(conflicts, force)
        impact = self.impact_analyzer.assess_booking_impact(window, request)

        with self.transaction():
            updated = self.window_repository.update(
                window_id, **column_values(request, exclude={"service_location_id"})
            )
            self.invalidate_location(window.service_location_id)

        significant = [name for name in _SIGNIFICANT_FIELDS if name in changes]
        if significant:
            self.logger.info(
                f"Venue window {window_id} at location {window.service_location_id} changed "
                f"{', '.join(significant)}; {impact.total_affected} booking(s) affected"
            )

        resolutions = []
        if impact_action is not None and impact.affected_bookings:
            resolutions = self.impact_analyzer.handle_affected_bookings(
                impact.affected_bookings, action_override=impact_action
            )

        return WindowChangeResult(
            window=updated or window, conflicts=conflicts, impact=impact, resolutions=resolutions
        )

    @BaseService.measure_operation("delete_venue_window")
    def delete_window(
        self,
        window_id: str,
        force: bool = False,
        impact_action: Optional[ImpactAction] = None,
    ) -> WindowDeletionResult:
        """
        Delete a venue window.

        A window with dependent bookings is only deleted with ``force``; those
        bookings are then resolved with ``impact_action`` (manual review when
        none is given).

        Raises:
            NotFoundException: Unknown window
            DependencyError: Dependent bookings and ``force`` not set
        """
        window = self._get_window_or_404(window_id)
        location_id = window.service_location_id
        impact = self.impact_analyzer.assess_deletion_impact(window)

        if impact.total_affected and not force:
            raise DependencyError(
                "venue availability window",
                [affected.booking_id for affected in impact.affected_bookings],
                message=(
                    f"Cannot delete venue window {window_id}: "
                    f"{impact.total_affected} upcoming booking(s) depend on it"
                ),
            )

        with self.transaction():
            deleted = self.window_repository.delete(window_id)
            self.invalidate_location(location_id)

        resolutions = []
        if impact.affected_bookings:
            resolutions = self.impact_analyzer.handle_affected_bookings(
                impact.affected_bookings,
                action_override=impact_action or ImpactAction.MANUAL_REVIEW,
            )

        self.logger.info(
            f"Deleted venue window {window_id} at location {location_id} "
            f"({impact.total_affected} dependent booking(s))"
        )
        return WindowDeletionResult(
            window_id=window_id, deleted=deleted, impact=impact, resolutions=resolutions
        )

    # Reports

    def check_overlapping_windows(
        self, location_id: str, data: Any, exclude_window_id: Optional[str] = None
    ) -> List[WindowConflict]:
        return self.impact_analyzer.check_overlapping_windows(location_id, data, exclude_window_id)

    def get_window_conflicts(self, window_id: str) -> WindowConflictsReport:
        return self.impact_analyzer.get_window_conflicts(self._get_window_or_404(window_id))

    def get_window_usage_stats(self, window_id: str) -> WindowUsageStats:
        return self.impact_analyzer.get_window_usage_stats(self._get_window_or_404(window_id))

    # Slot engine

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

    def _find_slots(
        self,
        location_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: int,
        options: SlotQueryOptions,
    ) -> List[VenueSlot]:
        return self.get_available_slots(location_id, start_date, end_date, duration_minutes, options)

    @BaseService.measure_operation("get_venue_slots")
    def get_available_slots(
        self,
        location_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: Optional[int] = None,
        options: Optional[SlotQueryOptions] = None,
    ) -> List[VenueSlot]:
        """
        Event slots of ``duration_minutes`` at a location in [start_date, end_date].

        Args:
            location_id: Service location
            start_date: First date (inclusive)
            end_date: Last date (inclusive)
            duration_minutes: Event length (default 240)
            options: Grid size, service for advance-booking rules, exclusions

        Returns:
            Slots sorted by start time, one per start time

        Raises:
            ValidationException: Invalid or too long date range, bad duration
            NotFoundException: Unknown ``options.service_id``
        """
        options = options or SlotQueryOptions()
        duration = duration_minutes or settings.default_event_duration_minutes
        if duration <= 0:
            raise ValidationException(
                f"Event duration must be positive, got {duration}", code="INVALID_DURATION"
            )
        self._check_range(start_date, end_date)

        cache_key = None
        if self.cache and options.use_cache:
            cache_key = CacheKeyBuilder.build(
                "venue_slots",
                location_id,
                start_date,
                end_date,
                duration,
                CacheKeyBuilder.hash_complex_key(options.cache_fingerprint()),
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return [VenueSlot.model_validate(item) for item in cached]

        slots = self._compute_slots(location_id, start_date, end_date, duration, options)

        if cache_key and self.cache:
            self.cache.set(
                cache_key,
                [slot.model_dump(mode="json") for slot in slots],
                ttl=settings.venue_slots_ttl_seconds,
                tags=[("location", location_id)],
            )
        return slots

    def _advance_service(self, options: SlotQueryOptions) -> Optional[Service]:
        if not options.service_id:
            return None
        service = self.service_repository.get_by_id(options.service_id)
        if service is None:
            raise NotFoundException(f"Service {options.service_id} not found", code="SERVICE_NOT_FOUND")
        return service

    def _compute_slots(
        self,
        location_id: str,
        start_date: date,
        end_date: date,
        duration: int,
        options: SlotQueryOptions,
    ) -> List[VenueSlot]:
        now = self.now()
        grid = timedelta(minutes=options.grid_minutes or settings.slot_grid_minutes)
        length = timedelta(minutes=duration)
        service = self._advance_service(options)

        windows = self.window_repository.get_location_windows(location_id, active_only=True)
        bookings = [
            booking
            for booking in self.booking_repository.get_location_bookings_overlapping(
                location_id,
                datetime.combine(start_date, datetime.min.time()),
                datetime.combine(end_date + timedelta(days=1), datetime.min.time()),
            )
            if booking.id not in options.exclude_booking_ids
        ]

        slots: Dict[datetime, VenueSlot] = {}
        for day in date_range(start_date, end_date):
            day_windows = [window for window in windows if window.covers_date(day)]
            if any(window.is_maintenance for window in day_windows):
                continue

            for window in day_windows:
                if window.earliest_access is None or window.latest_departure is None:
                    continue
                min_hours = window.min_advance_booking_hours
                if min_hours is None and service is not None:
                    min_hours = service.min_advance_booking_hours
                max_days = window.max_advance_booking_days
                if max_days is None and service is not None:
                    max_days = service.max_advance_booking_days

                quiet = None
                if window.quiet_hours_start is not None and window.quiet_hours_end is not None:
                    quiet = (
                        datetime.combine(day, window.quiet_hours_start),
                        datetime.combine(day, window.quiet_hours_end),
                    )

                current = datetime.combine(day, window.earliest_access)
                closes = datetime.combine(day, window.latest_departure)
                while current + length <= closes:
                    slot_end = current + length
                    if (
                        current not in slots
                        and current > now
                        and (min_hours is None or current >= now + timedelta(hours=min_hours))
                        and (max_days is None or current <= now + timedelta(days=max_days))
                        and not (quiet and overlaps(current, slot_end, *quiet))
                        and not any(
                            overlaps(current, slot_end, booking.scheduled_at, booking.ends_at)
                            for booking in bookings
                        )
                    ):
                        slots[current] = VenueSlot(
                            start_time=current,
                            end_time=slot_end,
                            duration_minutes=duration,
                            window_id=window.id,
                            window_type=window.window_type,
                            restrictions=list(window.restrictions or []),
                        )
                    current += grid

        return [slots[start] for start in sorted(slots)]

    # Calendar

    @BaseService.measure_operation("generate_public_availability_calendar")
    def generate_public_availability_calendar(
        self,
        location_id: str,
        start_date: date,
        end_date: date,
        event_duration: Optional[int] = None,
    ) -> AvailabilityCalendar:
        """
        Customer-facing availability for a location, one entry per day.

        Raises:
            NotFoundException: Unknown location
            ValidationException: Invalid or too long date range
        """
        self._require_location(location_id)
        duration = event_duration or settings.default_event_duration_minutes
        slots = self.get_available_slots(location_id, start_date, end_date, duration)
        windows = self.window_repository.get_location_windows(location_id, active_only=True)

        slots_by_day: Dict[date, List[VenueSlot]] = defaultdict(list)
        for slot in slots:
            slots_by_day[slot.start_time.date()].append(slot)

        calendar: Dict[str, CalendarDay] = {}
        for day in date_range(start_date, end_date):
            day_windows = [w for w in windows if not w.is_maintenance and w.covers_date(day)]
            restrictions: List[str] = []
            notes: List[str] = []
            for window in day_windows:
                restrictions.extend(window.restrictions or [])
                if window.quiet_hours_start is not None and window.quiet_hours_end is not None:
                    restrictions.append(
                        f"Quiet hours: {window.quiet_hours_start:%H:%M} - {window.quiet_hours_end:%H:%M}"
                    )
                if window.notes:
                    notes.append(window.notes)

            day_slots = slots_by_day.get(day, [])
            calendar[day.isoformat()] = CalendarDay(
                date=day,
                day_name=day.strftime("%A"),
                is_available=bool(day_slots),
                available_slots=[
                    CalendarSlot(
                        start_time=slot.start_time.strftime("%H:%M"),
                        end_time=slot.end_time.strftime("%H:%M"),
                        duration_minutes=slot.duration_minutes,
                    )
                    for slot in day_slots
                ],
                total_slots=len(day_slots),
                restrictions=list(dict.fromkeys(restrictions)),
                notes=notes,
            )

        return AvailabilityCalendar(
            location_id=location_id,
            start_date=start_date,
            end_date=end_date,
            event_duration_minutes=duration,
            calendar=calendar,
            summary=self._calendar_summary(calendar),
        )

    @staticmethod
    def _calendar_summary(calendar: Dict[str, CalendarDay]) -> CalendarSummary:
        total_days = len(calendar)
        available_days = sum(1 for day in calendar.values() if day.is_available)
        total_slots = sum(day.total_slots for day in calendar.values())
        return CalendarSummary(
            total_days=total_days,
            available_days=available_days,
            availability_rate=round(available_days / total_days * 100, 1) if total_days else 0.0,
            total_available_slots=total_slots,
            average_slots_per_day=round(total_slots / total_days, 1) if total_days else 0.0,
        )
