# backend/booking_engine/services/venue_amenity_service.py
"""
Venue Amenity Service for the booking engine

Handles amenity configuration and client requirement matching:
- Amenity CRUD with per-type rules and duplicate checks
- Fuzzy matching of client requirements to a location's amenities
- Pricing with quantity discounts
- Advance-notice aggregation and booking deadline
- Per-day availability and bulk availability updates

Matching is greedy: each requirement independently takes its best-scoring
amenity, so two requirements can land on the same limited amenity.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import ACTIVE_FUTURE_STATUSES, AmenityType, MatchQuality
from ..core.exceptions import (
    ConflictException,
    DependencyError,
    DomainException,
    NotFoundException,
    ValidationException,
)
from ..models.venue import VenueAmenity
from ..repositories import RepositoryFactory
from ..repositories.amenity_repository import AmenityRepository
from ..repositories.booking_repository import BookingRepository
from ..repositories.service_repository import ServiceRepository
from ..schemas._strict_base import column_values, parse_request
from ..schemas.amenity import (
    AmenityAvailability,
    AmenityCreate,
    AmenityMatch,
    AmenityPricing,
    AmenityRead,
    AmenityRequirement,
    AmenitySuggestion,
    AmenityUpdate,
    AvailabilityConflict,
    AvailabilityRecommendation,
    AvailabilityUpdate,
    BulkUpdateFailure,
    BulkUpdateResult,
    BulkUpdateSuccess,
    DayAvailability,
    MatchResult,
    NoticeRequirement,
    NoticeSummary,
    PricingLine,
    QuantityDiscount,
    RestrictionSummary,
)
from ..utils.intervals import date_range
from .base import BaseService, Clock

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

# Score weights (sum to 100)
NAME_WEIGHT = 40
CATEGORY_WEIGHT = 30
SPECIFICATION_WEIGHT = 20
QUANTITY_WEIGHT = 10

FULL_MATCH_SCORE = 80
PARTIAL_MATCH_SCORE = 50
NUMERIC_TOLERANCE = 0.1

# (minimum quantity, discount percentage), highest tier first
QUANTITY_DISCOUNT_TIERS = ((10, 15), (5, 10), (3, 5))

SORT_ORDER_STEP = 10
MAX_SUGGESTIONS = 5

_SIGNIFICANT_FIELDS = (
    "amenity_type",
    "additional_cost",
    "quantity_available",
    "requires_advance_notice",
    "is_active",
)


# Scoring


def name_similarity(requirement: str, amenity_name: str) -> float:
    """
    How closely a requested name matches an amenity name (0.0 - 1.0).

    Exact match (trimmed, case-insensitive) is 1.0 and containment either
    way 0.8; otherwise the share of words in common.
    """
    wanted = requirement.strip().lower()
    offered = amenity_name.strip().lower()
    if not wanted or not offered:
        return 0.0
    if wanted == offered:
        return 1.0
    if wanted in offered or offered in wanted:
        return 0.8

    wanted_words = wanted.split()
    offered_words = set(offered.split())
    common = sum(1 for word in wanted_words if word in offered_words)
    total = max(len(wanted_words), len(offered_words))
    return common / total if total else 0.0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def specification_overlap(required: Dict[str, Any], offered: Dict[str, Any]) -> float:
    """Share of required specification keys the amenity satisfies (0.0 - 1.0)."""
    if not required:
        return 0.0
    matching = 0
    for key, value in required.items():
        if key not in offered:
            continue
        actual = offered[key]
        if _is_number(value) and _is_number(actual):
            largest = max(abs(value), abs(actual))
            if largest == 0 or abs(value - actual) / largest <= NUMERIC_TOLERANCE:
                matching += 1
        elif value == actual:
            matching += 1
    return matching / len(required)


def match_quality(score: float) -> MatchQuality:
    if score >= FULL_MATCH_SCORE:
        return MatchQuality.FULL
    if score >= PARTIAL_MATCH_SCORE:
        return MatchQuality.PARTIAL
    return MatchQuality.NONE


def score_match(requirement: AmenityRequirement, amenity: Any) -> tuple:
    """Return (score, notes) for one requirement against one amenity."""
    notes: List[str] = []
    score = name_similarity(requirement.name, amenity.name) * NAME_WEIGHT

    if requirement.category is not None and requirement.category == amenity.amenity_type:
        score += CATEGORY_WEIGHT

    if requirement.specifications and amenity.specifications:
        score += specification_overlap(requirement.specifications, amenity.specifications) * SPECIFICATION_WEIGHT

    if requirement.quantity is not None:
        if amenity.quantity_available >= requirement.quantity:
            score += QUANTITY_WEIGHT
        else:
            notes.append("Insufficient quantity available")

    return score, notes


# Pricing and notice


def quantity_discount(quantity: int) -> QuantityDiscount:
    for minimum, percentage in QUANTITY_DISCOUNT_TIERS:
        if quantity >= minimum:
            return QuantityDiscount(
                applicable=True,
                percentage=percentage,
                description=f"{percentage}% discount for {minimum}+ quantities",
            )
    return QuantityDiscount()


def format_hours_text(hours: int) -> str:
    """Human-readable notice period: "5 hours", "1 day", "2 days, 3 hours"."""
    if hours < 24:
        return f"{hours} hours"
    days, remaining = divmod(hours, 24)
    day_text = "1 day" if days == 1 else f"{days} days"
    if remaining == 0:
        return day_text
    return f"{day_text}, {remaining} hours"


def format_notice(amenity: Any) -> str:
    if not amenity.requires_advance_notice:
        return "No advance notice required"
    return format_hours_text(amenity.notice_hours_required)


def calculate_amenity_pricing(matches: Iterable[AmenityMatch]) -> AmenityPricing:
    """
    Price the amenities picked by a set of matches.

    Included amenities cost nothing; others cost unit price times quantity,
    less the quantity discount for that line.
    """
    pricing = AmenityPricing()
    total = 0
    for match in matches:
        amenity = match.amenity
        if amenity is None:
            continue
        quantity = match.quantity

        if amenity.included_in_booking:
            pricing.included_amenities.append(
                PricingLine(
                    amenity_id=amenity.id,
                    name=amenity.name,
                    quantity=quantity,
                    unit_cost=0,
                    total_cost=0,
                )
            )
            continue

        line_total = amenity.additional_cost * quantity
        discount = quantity_discount(quantity)
        if discount.applicable:
            line_total = round(line_total * (100 - discount.percentage) / 100)
            pricing.quantity_discounts.append(discount)

        pricing.additional_amenities.append(
            PricingLine(
                amenity_id=amenity.id,
                name=amenity.name,
                quantity=quantity,
                unit_cost=amenity.additional_cost,
                total_cost=line_total,
            )
        )
        total += line_total

    pricing.total_additional_cost = total
    return pricing


def notice_summary(
    matches: Iterable[AmenityMatch],
    event_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> NoticeSummary:
    """Longest advance notice among matched amenities and the resulting booking deadline."""
    requirements: List[NoticeRequirement] = []
    max_hours = 0
    for match in matches:
        amenity = match.amenity
        if amenity is None or not amenity.requires_advance_notice:
            continue
        max_hours = max(max_hours, amenity.notice_hours_required)
        requirements.append(
            NoticeRequirement(
                amenity_id=amenity.id,
                amenity_name=amenity.name,
                notice_hours=amenity.notice_hours_required,
                formatted_notice=format_notice(amenity),
            )
        )

    summary = NoticeSummary(
        max_notice_hours=max_hours,
        formatted_max_notice=format_hours_text(max_hours),
        individual_requirements=requirements,
    )
    if event_date is not None:
        deadline = event_date - timedelta(hours=max_hours)
        summary.booking_deadline = deadline
        summary.can_book_now = (now or datetime.now()) <= deadline
    return summary


def compile_restrictions(matches: Iterable[AmenityMatch]) -> List[RestrictionSummary]:
    return [
        RestrictionSummary(
            amenity_id=match.amenity.id,
            amenity_name=match.amenity.name,
            restrictions=list(match.amenity.restrictions),
        )
        for match in matches
        if match.amenity is not None and match.amenity.restrictions
    ]


class VenueAmenityService(BaseService):
    """Amenity configuration, requirement matching, pricing and availability."""

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        clock: Optional[Clock] = None,
        amenity_repository: Optional[AmenityRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        service_repository: Optional[ServiceRepository] = None,
    ):
        super().__init__(db, cache, clock)
        self.repository = amenity_repository or RepositoryFactory.create_amenity_repository(db)
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.service_repository = service_repository or RepositoryFactory.create_service_repository(db)

    def _require_location(self, location_id: str) -> None:
        if self.service_repository.get_location(location_id) is None:
            raise NotFoundException(
                f"Service location {location_id} not found", code="LOCATION_NOT_FOUND"
            )

    def _get_amenity_or_404(self, amenity_id: str) -> VenueAmenity:
        amenity = self.repository.get_by_id(amenity_id)
        if amenity is None:
            raise NotFoundException(f"Amenity {amenity_id} not found", code="AMENITY_NOT_FOUND")
        return amenity

    def get_location_amenities(
        self, location_id: str, amenity_type: Optional[AmenityType] = None
    ) -> List[VenueAmenity]:
        return self.repository.get_location_amenities(
            location_id, amenity_type=amenity_type.value if amenity_type else None
        )

    # Writes

    def _check_rules(self, request: AmenityCreate, exclude_id: Optional[str] = None) -> None:
        duplicate = self.repository.find_duplicate(
            request.service_location_id, request.amenity_type.value, request.name, exclude_id
        )
        if duplicate is not None:
            raise ConflictException(
                "An amenity with this name already exists for this location and type",
                code="DUPLICATE_AMENITY",
                details={"amenity_id": duplicate.id},
            )
        if request.amenity_type == AmenityType.INFRASTRUCTURE and not request.included_in_booking:
            self.logger.warning(
                f"Infrastructure amenity '{request.name}' at location "
                f"{request.service_location_id} is not included in booking"
            )

    def next_sort_order(self, location_id: str, amenity_type: AmenityType) -> int:
        current = self.repository.get_max_sort_order(location_id, amenity_type.value)
        return (current or 0) + SORT_ORDER_STEP

    @BaseService.measure_operation("create_amenity")
    def create_amenity(self, data: Union[AmenityCreate, Dict[str, Any]]) -> VenueAmenity:
        """
        Create an amenity.

        Raises:
            ValidationException: Invalid data or type rule broken
            NotFoundException: Unknown location
            ConflictException: Same name and type already at the location
        """
        request = parse_request(AmenityCreate, data)
        self._require_location(request.service_location_id)
        self._check_rules(request)

        values = column_values(request)
        if values.get("sort_order") is None:
            values["sort_order"] = self.next_sort_order(request.service_location_id, request.amenity_type)

        with self.transaction():
            amenity = self.repository.create(**values)
            self.invalidate_location(amenity.service_location_id)

        self.log_operation(
            "create_amenity",
            amenity_id=amenity.id,
            location_id=amenity.service_location_id,
            amenity_type=amenity.amenity_type,
        )
        return amenity

    @BaseService.measure_operation("update_amenity")
    def update_amenity(
        self, amenity_id: str, data: Union[AmenityUpdate, BaseModel, Dict[str, Any]]
    ) -> VenueAmenity:
        """Merge changes over the stored amenity, re-validate and save."""
        amenity = self._get_amenity_or_404(amenity_id)
        changes = parse_request(AmenityUpdate, data).model_dump(exclude_unset=True)

        merged: Dict[str, Any] = {name: getattr(amenity, name) for name in AmenityCreate.model_fields}
        merged.update(changes)
        request = parse_request(AmenityCreate, merged)
        self._check_rules(request, exclude_id=amenity_id)

        previous = {name: getattr(amenity, name) for name in _SIGNIFICANT_FIELDS}
        with self.transaction():
            updated = self.repository.update(
                amenity_id, **column_values(request, exclude={"service_location_id"})
            )
            self.invalidate_location(amenity.service_location_id)

        significant = {
            name: (previous[name], getattr(updated, name))
            for name in _SIGNIFICANT_FIELDS
            if name in changes and previous[name] != getattr(updated, name)
        }
        if significant:
            self.logger.info(f"Significant amenity changes on {amenity_id}: {significant}")
        return updated or amenity

    def get_dependencies(self, amenity: VenueAmenity) -> List[str]:
        """
        Reasons the amenity cannot be deleted.

        Bookings do not record the amenities they use, so every future
        pending/confirmed booking at the location counts.
        """
        upcoming = self.booking_repository.get_upcoming_location_bookings(
            amenity.service_location_id, self.now(), statuses=ACTIVE_FUTURE_STATUSES
        )
        if not upcoming:
            return []
        return [f"Future bookings at this location ({len(upcoming)})"]

    @BaseService.measure_operation("delete_amenity")
    def delete_amenity(self, amenity_id: str, force: bool = False) -> bool:
        """
        Delete an amenity.

        Raises:
            NotFoundException: Unknown amenity
            DependencyError: Future bookings at the location and ``force`` not set
        """
        amenity = self._get_amenity_or_404(amenity_id)
        dependencies = self.get_dependencies(amenity)
        if dependencies and not force:
            raise DependencyError(
                "amenity",
                dependencies,
                message=f"Cannot delete amenity with active dependencies: {', '.join(dependencies)}",
            )

        location_id = amenity.service_location_id
        name = amenity.name
        with self.transaction():
            deleted = self.repository.delete(amenity_id)
            self.invalidate_location(location_id)

        self.logger.info(f"Deleted amenity {amenity_id} ('{name}') at location {location_id}")
        return deleted

    @BaseService.measure_operation("bulk_update_availability")
    def bulk_update_availability(
        self, updates: Sequence[Union[AvailabilityUpdate, Dict[str, Any]]]
    ) -> BulkUpdateResult:
        """
        Change quantity and/or active flag of several amenities at once.

        A bad entry is reported in ``failed_updates`` and does not stop the
        others.
        """
        result = BulkUpdateResult(total_processed=len(updates))
        touched_locations = set()

        with self.transaction():
            for raw in updates:
                amenity_id = raw.get("amenity_id", "unknown") if isinstance(raw, dict) else raw.amenity_id
                try:
                    update = parse_request(AvailabilityUpdate, raw)
                    amenity = self._get_amenity_or_404(update.amenity_id)
                    fields = update.model_dump(exclude_unset=True, exclude={"amenity_id"})
                    if fields.get("quantity_available") is not None and fields["quantity_available"] < 1:
                        raise ValidationException(
                            "Quantity available must be at least 1", code="INVALID_QUANTITY"
                        )
                    for name, value in fields.items():
                        if value is not None:
                            setattr(amenity, name, value)
                    self.repository.flush()
                except DomainException as e:
                    result.failed_updates.append(BulkUpdateFailure(amenity_id=str(amenity_id), error=e.message))
                    continue

                touched_locations.add(amenity.service_location_id)
                result.successful_updates.append(
                    BulkUpdateSuccess(amenity_id=amenity.id, name=amenity.name, updated_fields=sorted(fields))
                )

            for location_id in touched_locations:
                self.invalidate_location(location_id)

        self.logger.info(
            f"Bulk amenity availability update: {result.total_processed} processed, "
            f"{len(result.successful_updates)} successful, {len(result.failed_updates)} failed"
        )
        return result

    # Availability

    def day_availability(self, amenity: Any, on_date: date) -> DayAvailability:
        """Units of an amenity left on a date; each booking at the location uses one."""
        bookings = self.booking_repository.get_location_bookings_on_date(
            amenity.service_location_id, on_date
        )
        used = len(bookings)
        available = max(0, amenity.quantity_available - used)
        return DayAvailability(
            date=on_date,
            total_quantity=amenity.quantity_available,
            used_quantity=used,
            available_quantity=available,
            is_available=available > 0,
            conflicting_bookings=used,
        )

    @BaseService.measure_operation("get_amenity_availability")
    def get_amenity_availability(
        self, amenity_id: str, start_date: date, end_date: date
    ) -> AmenityAvailability:
        """Per-day availability of an amenity with restocking recommendations."""
        if end_date < start_date:
            raise ValidationException(
                f"End date {end_date} is before start date {start_date}", code="INVALID_DATE_RANGE"
            )
        if (end_date - start_date).days + 1 > settings.max_slot_query_days:
            raise ValidationException(
                f"Date range exceeds the maximum of {settings.max_slot_query_days} days",
                code="DATE_RANGE_TOO_LONG",
            )
        amenity = self._get_amenity_or_404(amenity_id)

        by_date: Dict[str, DayAvailability] = {}
        conflicts: List[AvailabilityConflict] = []
        for day in date_range(start_date, end_date):
            availability = self.day_availability(amenity, day)
            by_date[day.isoformat()] = availability
            if availability.available_quantity < amenity.quantity_available:
                conflicts.append(
                    AvailabilityConflict(
                        date=day,
                        available=availability.available_quantity,
                        total=amenity.quantity_available,
                        conflicting_bookings=availability.conflicting_bookings,
                    )
                )

        return AmenityAvailability(
            amenity_id=amenity.id,
            amenity_name=amenity.name,
            total_quantity=amenity.quantity_available,
            date_availability=by_date,
            conflicts=conflicts,
            recommendations=self._recommendations(amenity, len(conflicts), len(by_date)),
        )

    @staticmethod
    def _recommendations(
        amenity: VenueAmenity, conflict_days: int, total_days: int
    ) -> List[AvailabilityRecommendation]:
        recommendations = []
        if total_days and conflict_days / total_days > 0.3:
            recommendations.append(
                AvailabilityRecommendation(
                    type="inventory",
                    priority="high",
                    description="Consider increasing quantity available due to high demand",
                    suggested_quantity=amenity.quantity_available + 2,
                )
            )
        if amenity.requires_advance_notice and amenity.notice_hours_required > 72:
            recommendations.append(
                AvailabilityRecommendation(
                    type="notice",
                    priority="medium",
                    description="Long notice period may reduce bookings - consider reducing if possible",
                    current_notice=format_notice(amenity),
                )
            )
        if not amenity.included_in_booking and amenity.additional_cost == 0:
            recommendations.append(
                AvailabilityRecommendation(
                    type="pricing",
                    priority="low",
                    description="Consider adding cost for premium amenities to increase revenue",
                )
            )
        return recommendations

    # Matching

    def _best_match(
        self,
        requirement: AmenityRequirement,
        amenities: Sequence[VenueAmenity],
        event_date: Optional[datetime],
    ) -> AmenityMatch:
        best = AmenityMatch(requirement=requirement, quantity=requirement.quantity or 1)
        for amenity in amenities:
            score, notes = score_match(requirement, amenity)
            if score > best.match_score:
                quantity = requirement.quantity or 1
                best = AmenityMatch(
                    requirement=requirement,
                    amenity=AmenityRead.model_validate(amenity),
                    match_quality=match_quality(score),
                    match_score=score,
                    quantity=quantity,
                    availability=self.day_availability(amenity, event_date.date()) if event_date else None,
                    cost=0 if amenity.included_in_booking else amenity.additional_cost * quantity,
                    notes=notes,
                )
        return best

    def suggest_additional_amenities(
        self, location_id: str, requirements: Sequence[AmenityRequirement]
    ) -> List[AmenitySuggestion]:
        """Popular amenities (by sort order) whose names no requirement already mentions."""
        requested = [r.name.strip().lower() for r in requirements if r.name.strip()]
        suggestions = []
        for amenity in self.repository.get_suggestion_candidates(location_id, limit=MAX_SUGGESTIONS):
            name = amenity.name.lower()
            if any(wanted in name for wanted in requested):
                continue
            suggestions.append(
                AmenitySuggestion(
                    amenity=AmenityRead.model_validate(amenity),
                    reason="Popular choice for similar events",
                    cost=amenity.additional_cost,
                )
            )
        return suggestions

    @BaseService.measure_operation("match_requirements")
    def match_requirements(
        self,
        location_id: str,
        requirements: Sequence[Union[AmenityRequirement, Dict[str, Any]]],
        event_date: Optional[Union[date, datetime]] = None,
    ) -> MatchResult:
        """
        Match client requirements against a location's active amenities.

        Args:
            location_id: Service location
            requirements: What the client asked for
            event_date: Event start; enables availability and the notice deadline

        Returns:
            MatchResult grouped by match quality, with pricing, notice and
            restrictions for the matched amenities
        """
        self._require_location(location_id)
        parsed = [parse_request(AmenityRequirement, requirement) for requirement in requirements]
        if event_date is not None and not isinstance(event_date, datetime):
            event_date = datetime.combine(event_date, time.min)

        amenities = self.repository.get_location_amenities(location_id, active_only=True)
        result = MatchResult()
        for requirement in parsed:
            match = self._best_match(requirement, amenities, event_date)
            if match.match_quality == MatchQuality.FULL:
                result.fully_matched.append(match)
            elif match.match_quality == MatchQuality.PARTIAL:
                result.partially_matched.append(match)
            else:
                result.unmatched.append(match)

        matched = result.fully_matched + result.partially_matched
        result.cost_breakdown = calculate_amenity_pricing(matched)
        result.notice_requirements = notice_summary(matched, event_date, self.now())
        result.restrictions = compile_restrictions(matched)
        result.additional_amenities = self.suggest_additional_amenities(location_id, parsed)

        self.logger.info(
            f"Matched {len(parsed)} requirement(s) at location {location_id}: "
            f"{len(result.fully_matched)} full, {len(result.partially_matched)} partial, "
            f"{len(result.unmatched)} unmatched"
        )
        return result
