# backend/booking_engine/services/venue_impact_analyzer.py
"""
Venue Impact Analyzer for the booking engine

Answers "what does this window change break?":
- Overlaps between a venue window and the other active windows of its location
- Bookings affected by narrowing a window (access hours, quiet hours)
- Bookings that depend on a window about to be deleted
- Resolution of affected bookings (reschedule, review flag, cancellation)
- Window conflict reports and usage statistics

Nothing here decides whether a write goes ahead; VenueAvailabilityService
does that with the reports produced here.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    ACTIVE_FUTURE_STATUSES,
    BookingStatus,
    ConflictSeverity,
    ImpactAction,
    VenueWindowType,
)
from ..models.booking import Booking
from ..models.venue import VenueAvailabilityWindow
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from ..repositories.capacity_slot_repository import CapacitySlotRepository
from ..repositories.venue_window_repository import VenueWindowRepository
from ..schemas._strict_base import column_values
from ..schemas.availability import SlotQueryOptions
from ..schemas.venue import (
    BookingImpact,
    BookingImpactReport,
    BookingResolution,
    BookingWindowConflict,
    CapacityIssue,
    OverCapacityPeriod,
    UsageIssue,
    VenueSlot,
    WindowConflict,
    WindowConflictsReport,
    WindowRevenue,
    WindowUsageStats,
)
from ..utils.intervals import date_range, day_of_week_index, overlaps
from .base import BaseService, Clock

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

# (location_id, start_date, end_date, duration_minutes, options) -> slots
SlotFinder = Callable[[str, date, date, int, SlotQueryOptions], List[VenueSlot]]

_IMPACT_EXCLUDED_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value)
_USAGE_WINDOW_DAYS = 30


def as_window(data: Any) -> VenueAvailabilityWindow:
    """
    Return ``data`` as a VenueAvailabilityWindow.

    Pydantic models and dicts become a transient row that is never added to
    the session; existing rows are returned unchanged.
    """
    if isinstance(data, VenueAvailabilityWindow):
        return data
    if isinstance(data, BaseModel):
        return VenueAvailabilityWindow(**column_values(data))
    values = {
        key: value.value if isinstance(value, Enum) else value for key, value in dict(data).items()
    }
    return VenueAvailabilityWindow(**values)


def _dated_span(window: VenueAvailabilityWindow) -> Optional[tuple]:
    if window.specific_date is not None:
        return window.specific_date, window.specific_date
    if window.date_range_start is not None and window.date_range_end is not None:
        return window.date_range_start, window.date_range_end
    return None


def conflict_severity(type_a: str, type_b: str) -> ConflictSeverity:
    """Severity of two overlapping windows of the given types."""
    types = {type_a, type_b}
    if VenueWindowType.MAINTENANCE.value in types:
        return ConflictSeverity.CRITICAL
    if types == {VenueWindowType.SPECIAL_EVENT.value, VenueWindowType.REGULAR.value}:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.HIGH


def find_overlap(
    candidate: VenueAvailabilityWindow, other: VenueAvailabilityWindow
) -> Optional[WindowConflict]:
    """
    Overlap between two windows, or None.

    Recurring windows clash on the same weekday with overlapping access hours;
    dated windows clash when their (inclusive) date spans intersect. A
    recurring window never clashes with a dated one.
    """
    if candidate.is_recurring and other.is_recurring:
        if candidate.day_of_week != other.day_of_week:
            return None
        times = (
            candidate.earliest_access,
            candidate.latest_departure,
            other.earliest_access,
            other.latest_departure,
        )
        if any(t is None for t in times) or not overlaps(*times):
            return None
        overlap_type = "time_overlap"
        details: Dict[str, Any] = {
            "day_of_week": other.day_of_week,
            "existing_time": f"{other.earliest_access:%H:%M} - {other.latest_departure:%H:%M}",
        }
    else:
        span_a = _dated_span(candidate)
        span_b = _dated_span(other)
        if span_a is None or span_b is None:
            return None
        if span_a[0] > span_b[1] or span_b[0] > span_a[1]:
            return None
        overlap_type = "date_overlap"
        details = {"existing_dates": f"{span_b[0]} - {span_b[1]}"}

    return WindowConflict(
        window_id=other.id,
        window_type=other.window_type,
        overlap_type=overlap_type,
        severity=conflict_severity(candidate.window_type, other.window_type),
        details=details,
    )


def _in_quiet_hours(window: VenueAvailabilityWindow, booking: Booking) -> bool:
    if window.quiet_hours_start is None or window.quiet_hours_end is None:
        return False
    on_date = booking.scheduled_at.date()
    quiet_start = datetime.combine(on_date, window.quiet_hours_start)
    quiet_end = datetime.combine(on_date, window.quiet_hours_end)
    return overlaps(booking.scheduled_at, booking.ends_at, quiet_start, quiet_end)


def _outside_access_hours(window: VenueAvailabilityWindow, booking: Booking) -> List[str]:
    reasons = []
    if window.earliest_access is not None and booking.scheduled_at.time() < window.earliest_access:
        reasons.append(
            f"Booking starts at {booking.scheduled_at:%H:%M}, before earliest access "
            f"{window.earliest_access:%H:%M}"
        )
    if window.latest_departure is not None:
        ends_late = booking.ends_at.date() > booking.scheduled_at.date() or (
            booking.ends_at.time() > window.latest_departure
        )
        if ends_late:
            reasons.append(
                f"Booking ends at {booking.ends_at:%H:%M}, after latest departure "
                f"{window.latest_departure:%H:%M}"
            )
    return reasons


def _window_contains_booking(window: VenueAvailabilityWindow, booking: Booking) -> bool:
    if window.earliest_access is None or window.latest_departure is None:
        return False
    on_date = booking.scheduled_at.date()
    return (
        datetime.combine(on_date, window.earliest_access) <= booking.scheduled_at
        and booking.ends_at <= datetime.combine(on_date, window.latest_departure)
    )


def _impact(
    booking: Booking,
    impact_type: str,
    details: List[str],
    action: ImpactAction = ImpactAction.MANUAL_REVIEW,
) -> BookingImpact:
    return BookingImpact(
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        scheduled_at=booking.scheduled_at,
        ends_at=booking.ends_at,
        status=booking.status,
        impact_type=impact_type,
        severity=ConflictSeverity.HIGH,
        recommended_action=action,
        details=details,
    )


class VenueImpactAnalyzer(BaseService):
    """
    Conflict and impact analysis for venue availability windows.

    ``slot_finder`` is the venue slot engine used to look for alternatives
    when a booking is auto-rescheduled; without one, auto_reschedule falls
    back to manual review.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        window_repository: Optional[VenueWindowRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        capacity_repository: Optional[CapacitySlotRepository] = None,
        slot_finder: Optional[SlotFinder] = None,
    ):
        super().__init__(db, cache, clock)
        self.window_repository = window_repository or RepositoryFactory.create_venue_window_repository(db)
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.capacity_repository = (
            capacity_repository or RepositoryFactory.create_capacity_slot_repository(db)
        )
        self.slot_finder = slot_finder

    # Window overlaps

    def check_overlapping_windows(
        self, location_id: str, data: Any, exclude_window_id: Optional[str] = None
    ) -> List[WindowConflict]:
        """
        Active windows of ``location_id`` that overlap ``data``.

        Args:
            location_id: Location whose windows are compared
            data: Proposed window (request model, dict or row)
            exclude_window_id: The window being edited
        """
        candidate = as_window(data)
        others = self.window_repository.get_location_windows(
            location_id, active_only=True, exclude_id=exclude_window_id
        )
        conflicts = [
            conflict
            for conflict in (find_overlap(candidate, other) for other in others)
            if conflict is not None
        ]
        if conflicts:
            self.logger.info(
                f"Window for location {location_id} overlaps {len(conflicts)} existing window(s)"
            )
        return conflicts

    # Booking impact

    def _bookings_covered_by(
        self,
        window: VenueAvailabilityWindow,
        bookings: Iterable[Booking],
    ) -> List[Booking]:
        return [booking for booking in bookings if window.covers_date(booking.scheduled_at.date())]

    @BaseService.measure_operation("assess_booking_impact")
    def assess_booking_impact(self, window: VenueAvailabilityWindow, new_data: Any) -> BookingImpactReport:
        """
        Upcoming bookings that the proposed state of ``window`` would no longer fit.

        Args:
            window: The stored window
            new_data: The complete proposed window (request model, dict or row)
        """
        proposed = as_window(new_data)
        location_id = window.service_location_id
        upcoming = self.booking_repository.get_upcoming_location_bookings(
            location_id, self.now(), exclude_statuses=_IMPACT_EXCLUDED_STATUSES
        )

        impacts: List[BookingImpact] = []
        for booking in self._bookings_covered_by(proposed, upcoming):
            if proposed.is_maintenance:
                impacts.append(
                    _impact(booking, "availability_removed", ["Venue closed for maintenance"])
                )
                continue
            reasons = _outside_access_hours(proposed, booking)
            if reasons:
                impacts.append(_impact(booking, "time_restriction", reasons))
            elif _in_quiet_hours(proposed, booking):
                impacts.append(
                    _impact(
                        booking,
                        "quiet_hours",
                        [
                            f"Booking overlaps quiet hours {proposed.quiet_hours_start:%H:%M} - "
                            f"{proposed.quiet_hours_end:%H:%M}"
                        ],
                    )
                )

        report = BookingImpactReport.from_impacts(impacts)
        if report.total_affected:
            self.logger.warning(
                f"Change to venue window {window.id} affects {report.total_affected} booking(s) "
                f"at location {location_id}"
            )
        return report

    def get_dependent_bookings(self, window: VenueAvailabilityWindow) -> List[Booking]:
        """
        Future pending/confirmed bookings that only this window makes possible.

        A booking also contained by another active, non-maintenance window of
        the location does not depend on this one.
        """
        if window.is_maintenance:
            return []
        location_id = window.service_location_id
        upcoming = self.booking_repository.get_upcoming_location_bookings(
            location_id, self.now(), statuses=ACTIVE_FUTURE_STATUSES
        )
        covered = self._bookings_covered_by(window, upcoming)
        if not covered:
            return []

        alternatives = [
            other
            for other in self.window_repository.get_location_windows(
                location_id, active_only=True, exclude_id=window.id
            )
            if not other.is_maintenance
        ]
        return [
            booking
            for booking in covered
            if not any(
                other.covers_date(booking.scheduled_at.date())
                and _window_contains_booking(other, booking)
                for other in alternatives
            )
        ]

    @BaseService.measure_operation("assess_deletion_impact")
    def assess_deletion_impact(self, window: VenueAvailabilityWindow) -> BookingImpactReport:
        impacts = [
            _impact(booking, "availability_removed", ["Availability window removed"])
            for booking in self.get_dependent_bookings(window)
        ]
        return BookingImpactReport.from_impacts(impacts)

    # Resolution

    def _find_alternatives(self, booking: Booking) -> List[VenueSlot]:
        if self.slot_finder is None:
            return []
        booking_date = booking.scheduled_at.date()
        earliest = max(
            booking_date - timedelta(days=settings.reschedule_search_days_before),
            self.now().date(),
        )
        latest = booking_date + timedelta(days=settings.reschedule_search_days_after)
        options = SlotQueryOptions(
            service_id=booking.service_id,
            exclude_booking_ids=[booking.id],
            use_cache=False,
        )
        slots = self.slot_finder(
            booking.service_location_id, earliest, latest, booking.duration_minutes, options
        )
        return [slot for slot in slots if slot.start_time != booking.scheduled_at]

    def _release_capacity(self, booking: Booking) -> None:
        """Give back the unit ``booking`` holds at its current start, if it holds one."""
        if not booking.service_id:
            return
        slot = self.capacity_repository.find_slot(
            booking.service_id, booking.service_location_id, booking.scheduled_at
        )
        if slot is not None and not self.capacity_repository.try_release(slot.id, 1):
            self.logger.warning(f"Capacity slot {slot.id} had no booking to release for {booking.id}")

    def _take_capacity(self, booking: Booking, start: datetime) -> bool:
        """Reserve one unit for ``booking`` at ``start``; bookings without a service always fit."""
        if not booking.service_id:
            return True
        default_capacity = booking.service.default_capacity if booking.service is not None else 1
        slot = self.capacity_repository.find_or_create(
            booking.service_id,
            booking.service_location_id,
            start,
            default_max_capacity=default_capacity,
        )
        return self.capacity_repository.try_reserve(slot.id, 1, self.now())

    def _flag(self, booking: Booking, action: ImpactAction, reason: str) -> BookingResolution:
        booking.flag_for_review(reason)
        self.logger.warning(f"Booking {booking.id} flagged for manual review: {reason}")
        return BookingResolution(
            booking_id=booking.id,
            requested_action=action,
            outcome="flagged_for_review",
            reason=reason,
        )

    def _reschedule(self, booking: Booking, action: ImpactAction, reason: str) -> BookingResolution:
        alternatives = self._find_alternatives(booking)
        for alternative in alternatives:
            if not self._take_capacity(booking, alternative.start_time):
                self.logger.info(
                    f"No capacity left at {alternative.start_time} for booking {booking.id}"
                )
                continue
            self._release_capacity(booking)
            previous = booking.scheduled_at
            booking.reschedule(alternative.start_time, alternative.end_time)
            self.logger.info(
                f"Booking {booking.id} rescheduled from {previous} to {alternative.start_time}"
            )
            return BookingResolution(
                booking_id=booking.id,
                requested_action=action,
                outcome="rescheduled",
                new_start=alternative.start_time,
                new_end=alternative.end_time,
                reason=reason,
            )
        return self._flag(booking, action, f"No suitable alternative slots found ({reason})")

    def _resolve(self, booking: Booking, action: ImpactAction, reason: str) -> BookingResolution:
        if action == ImpactAction.AUTO_RESCHEDULE:
            return self._reschedule(booking, action, reason)

        if action == ImpactAction.CANCEL_BOOKING:
            cancellation_reason = f"Venue availability conflict - {reason}"
            if booking.status != BookingStatus.CANCELLED.value:
                self._release_capacity(booking)
            booking.cancel(cancellation_reason, self.now())
            return BookingResolution(
                booking_id=booking.id,
                requested_action=action,
                outcome="cancelled",
                reason=cancellation_reason,
            )

        # manual_review, and "none" which never leaves a conflict unhandled
        return self._flag(booking, action, reason)

    @BaseService.measure_operation("handle_affected_bookings")
    def handle_affected_bookings(
        self,
        impacts: Sequence[BookingImpact],
        action_override: Optional[ImpactAction] = None,
    ) -> List[BookingResolution]:
        """
        Apply an action to each affected booking.

        Args:
            impacts: Affected bookings from one of the assess_* reports
            action_override: Action for every booking instead of each impact's
                recommended action

        Returns:
            One resolution per impact, in order
        """
        resolutions: List[BookingResolution] = []
        touched_locations = set()
        touched_services = set()
        with self.transaction():
            for impact in impacts:
                action = action_override or impact.recommended_action
                booking = self.booking_repository.get_by_id(impact.booking_id)
                if booking is None:
                    self.logger.warning(f"Affected booking {impact.booking_id} no longer exists")
                    resolutions.append(
                        BookingResolution(
                            booking_id=impact.booking_id, requested_action=action, outcome="not_found"
                        )
                    )
                    continue
                reason = "; ".join(impact.details) or impact.impact_type
                resolutions.append(self._resolve(booking, action, reason))
                touched_locations.add(booking.service_location_id)
                if booking.service_id:
                    touched_services.add(booking.service_id)
                self.booking_repository.flush()

            for location_id in touched_locations:
                self.invalidate_location(location_id)
            for service_id in touched_services:
                self.invalidate_service(service_id)

        return resolutions

    # Reports

    def _window_bookings(
        self, window: VenueAvailabilityWindow, exclude_statuses: Sequence[str] = (BookingStatus.CANCELLED.value,)
    ) -> List[Booking]:
        bookings = self.booking_repository.get_location_bookings(
            window.service_location_id, exclude_statuses=exclude_statuses
        )
        return self._bookings_covered_by(window, bookings)

    def _booking_conflicts(self, window: VenueAvailabilityWindow) -> List[BookingWindowConflict]:
        upcoming = self.booking_repository.get_upcoming_location_bookings(
            window.service_location_id, self.now(), statuses=ACTIVE_FUTURE_STATUSES
        )
        conflicts = []
        for booking in self._bookings_covered_by(window, upcoming):
            conflict_type = None
            severity = ConflictSeverity.HIGH
            if _outside_access_hours(window, booking):
                conflict_type = "time_restriction"
            if window.quiet_hours_start is not None and window.quiet_hours_end is not None:
                start = booking.scheduled_at.time()
                end = booking.ends_at.time()
                # Inclusive at both ends: touching quiet hours counts
                if (window.quiet_hours_start <= start <= window.quiet_hours_end) or (
                    window.quiet_hours_start <= end <= window.quiet_hours_end
                ):
                    conflict_type = "quiet_hours"
                    severity = ConflictSeverity.MEDIUM
            if conflict_type:
                conflicts.append(
                    BookingWindowConflict(
                        booking_id=booking.id,
                        booking_reference=booking.booking_reference,
                        conflict_type=conflict_type,
                        severity=severity,
                    )
                )
        return conflicts

    @staticmethod
    def over_capacity_periods(bookings: Sequence[Booking], max_allowed: int) -> List[OverCapacityPeriod]:
        """
        Group bookings that overlap one another and report groups over ``max_allowed``.

        Each booking starts at most one group; a booking already placed in a
        group is not the seed of another.
        """
        periods = []
        grouped = set()
        for booking in bookings:
            if booking.id in grouped:
                continue
            group = [
                other
                for other in bookings
                if other.id not in grouped
                and overlaps(booking.scheduled_at, booking.ends_at, other.scheduled_at, other.ends_at)
            ]
            grouped.update(other.id for other in group)
            if len(group) > max_allowed:
                periods.append(
                    OverCapacityPeriod(
                        start_time=min(other.scheduled_at for other in group),
                        end_time=max(other.ends_at for other in group),
                        concurrent_bookings=len(group),
                        max_allowed=max_allowed,
                        excess=len(group) - max_allowed,
                    )
                )
        return periods

    @BaseService.measure_operation("get_window_conflicts")
    def get_window_conflicts(self, window: VenueAvailabilityWindow) -> WindowConflictsReport:
        """Scheduling, booking and capacity conflicts of a stored window."""
        capacity_issues = [
            CapacityIssue(period=period)
            for period in self.over_capacity_periods(
                self._window_bookings(window), window.max_concurrent_events
            )
        ]
        return WindowConflictsReport(
            scheduling_conflicts=self.check_overlapping_windows(
                window.service_location_id, window, exclude_window_id=window.id
            ),
            booking_conflicts=self._booking_conflicts(window),
            capacity_issues=capacity_issues,
        )

    @staticmethod
    def _possible_days(window: VenueAvailabilityWindow, start: date, end: date) -> int:
        if window.is_recurring:
            return sum(1 for day in date_range(start, end) if day_of_week_index(day) == window.day_of_week)
        return (end - start).days

    @BaseService.measure_operation("get_window_usage_stats")
    def get_window_usage_stats(
        self, window: VenueAvailabilityWindow, now: Optional[datetime] = None
    ) -> WindowUsageStats:
        """Usage of a window over the last 30 days."""
        moment = now or self.now()
        range_start = datetime.combine(moment.date() - timedelta(days=_USAGE_WINDOW_DAYS), time.min)
        range_end = datetime.combine(moment.date(), time.max)

        in_range = [
            booking
            for booking in self._window_bookings(window, exclude_statuses=())
            if range_start <= booking.scheduled_at <= range_end
        ]
        cancelled = [b for b in in_range if b.status == BookingStatus.CANCELLED.value]
        bookings = [b for b in in_range if b.status != BookingStatus.CANCELLED.value]

        possible = self._possible_days(window, range_start.date(), range_end.date())
        utilization = round(len(bookings) / possible * 100, 2) if possible else 0.0

        average_duration = (
            int(sum(b.duration_minutes for b in bookings) / len(bookings)) if bookings else 0
        )

        hours = Counter(b.scheduled_at.hour for b in bookings)
        peaks = sorted(hours.items(), key=lambda item: (-item[1], item[0]))[:3]
        peak_usage_times = {f"{hour:02d}:00": count for hour, count in peaks}

        completed = [b for b in bookings if b.status == BookingStatus.COMPLETED.value]
        revenue = sum(b.total_amount or 0 for b in completed)

        issues: List[UsageIssue] = []
        if cancelled:
            issues.append(
                UsageIssue(
                    type="cancellations",
                    count=len(cancelled),
                    description=f"{len(cancelled)} bookings cancelled in this window",
                )
            )
        over_capacity = self.over_capacity_periods(bookings, window.max_concurrent_events)
        if over_capacity:
            issues.append(
                UsageIssue(
                    type="capacity_issues",
                    count=len(over_capacity),
                    description="Periods where concurrent bookings exceeded capacity",
                )
            )

        return WindowUsageStats(
            total_bookings=len(bookings),
            utilization_rate=utilization,
            average_event_duration=average_duration,
            peak_usage_times=peak_usage_times,
            revenue_generated=WindowRevenue(
                total_revenue=revenue,
                booking_count=len(completed),
                average_booking_value=int(revenue / len(completed)) if completed else 0,
            ),
            common_issues=issues,
        )
