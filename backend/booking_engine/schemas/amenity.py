# backend/booking_engine/schemas/amenity.py
"""
Venue amenity schemas.

Specifications are free-form key/value data except for the amenity types
whose shape is known: equipment must state a setup time and furniture its
dimensions. Those are validated on write through typed models; every other
type keeps an open dictionary.
"""

import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.enums import AmenityType, MatchQuality
from ._strict_base import StrictModel, StrictRequestModel

DateType = datetime.date
DateTimeType = datetime.datetime


class EquipmentSpecifications(BaseModel):
    model_config = ConfigDict(extra="allow")

    setup_time: Union[int, float, str]


class FurnitureSpecifications(BaseModel):
    model_config = ConfigDict(extra="allow")

    dimensions: Union[str, Dict[str, Any]]


_TYPED_SPECIFICATIONS = {
    AmenityType.EQUIPMENT: (EquipmentSpecifications, "setup_time", "Equipment amenities should specify setup time"),
    AmenityType.FURNITURE: (FurnitureSpecifications, "dimensions", "Furniture amenities should include dimensions"),
}


def typed_specifications(
    amenity_type: AmenityType, specifications: Optional[Dict[str, Any]]
) -> Optional[BaseModel]:
    """Parse specifications into the typed model for ``amenity_type`` (None if untyped)."""
    entry = _TYPED_SPECIFICATIONS.get(amenity_type)
    if entry is None:
        return None
    model, required_key, message = entry
    specs = specifications or {}
    if required_key not in specs:
        raise ValueError(message)
    return model.model_validate(specs)


class AmenityCreate(StrictRequestModel):
    service_location_id: str
    amenity_type: AmenityType
    name: str
    description: Optional[str] = None
    included_in_booking: bool = False
    additional_cost: int = Field(default=0, ge=0)
    quantity_available: int = 1
    requires_advance_notice: bool = False
    notice_hours_required: int = 0
    specifications: Optional[Dict[str, Any]] = None
    restrictions: Optional[List[str]] = None
    is_active: bool = True
    sort_order: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Amenity name cannot be empty")
        return v

    @field_validator("quantity_available")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity available must be at least 1")
        return v

    @field_validator("notice_hours_required")
    @classmethod
    def validate_notice_hours(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Notice hours required cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_type_rules(self) -> "AmenityCreate":
        if self.amenity_type == AmenityType.RESTRICTION and self.additional_cost > 0:
            raise ValueError("Restriction amenities should not have additional cost")
        typed_specifications(self.amenity_type, self.specifications)
        return self


class AmenityUpdate(StrictRequestModel):
    """Partial update; the service re-validates the merged amenity as a whole."""

    amenity_type: Optional[AmenityType] = None
    name: Optional[str] = None
    description: Optional[str] = None
    included_in_booking: Optional[bool] = None
    additional_cost: Optional[int] = Field(default=None, ge=0)
    quantity_available: Optional[int] = None
    requires_advance_notice: Optional[bool] = None
    notice_hours_required: Optional[int] = None
    specifications: Optional[Dict[str, Any]] = None
    restrictions: Optional[List[str]] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class AmenityRead(StrictModel):
    """Snapshot of an amenity row carried inside match results."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    service_location_id: str
    amenity_type: AmenityType
    name: str
    included_in_booking: bool
    additional_cost: int
    quantity_available: int
    requires_advance_notice: bool
    notice_hours_required: int
    specifications: Optional[Dict[str, Any]] = None
    restrictions: Optional[List[str]] = None
    sort_order: int = 0


class AmenityRequirement(StrictRequestModel):
    """What a client asked for, in their own words."""

    name: str = ""
    category: Optional[str] = None
    specifications: Optional[Dict[str, Any]] = None
    quantity: Optional[int] = Field(default=None, ge=1)


class DayAvailability(StrictModel):
    date: DateType
    total_quantity: int
    used_quantity: int
    available_quantity: int
    is_available: bool
    conflicting_bookings: int


class AvailabilityConflict(StrictModel):
    date: DateType
    available: int
    total: int
    conflicting_bookings: int


class AvailabilityRecommendation(StrictModel):
    type: str
    priority: str
    description: str
    suggested_quantity: Optional[int] = None
    current_notice: Optional[str] = None


class AmenityAvailability(StrictModel):
    amenity_id: str
    amenity_name: str
    total_quantity: int
    date_availability: Dict[str, DayAvailability]
    conflicts: List[AvailabilityConflict]
    recommendations: List[AvailabilityRecommendation]


class AmenityMatch(StrictModel):
    requirement: AmenityRequirement
    amenity: Optional[AmenityRead] = None
    match_quality: MatchQuality = MatchQuality.NONE
    match_score: float = 0.0
    quantity: int = 1
    availability: Optional[DayAvailability] = None
    cost: int = 0
    notes: List[str] = Field(default_factory=list)


class PricingLine(StrictModel):
    amenity_id: str
    name: str
    quantity: int
    unit_cost: int
    total_cost: int


class QuantityDiscount(StrictModel):
    applicable: bool = False
    percentage: int = 0
    description: str = ""


class AmenityPricing(StrictModel):
    included_amenities: List[PricingLine] = Field(default_factory=list)
    additional_amenities: List[PricingLine] = Field(default_factory=list)
    total_additional_cost: int = 0
    quantity_discounts: List[QuantityDiscount] = Field(default_factory=list)


class NoticeRequirement(StrictModel):
    amenity_id: str
    amenity_name: str
    notice_hours: int
    formatted_notice: str


class NoticeSummary(StrictModel):
    max_notice_hours: int = 0
    formatted_max_notice: str = "0 hours"
    individual_requirements: List[NoticeRequirement] = Field(default_factory=list)
    booking_deadline: Optional[DateTimeType] = None
    can_book_now: Optional[bool] = None


class RestrictionSummary(StrictModel):
    amenity_id: str
    amenity_name: str
    restrictions: List[str]


class AmenitySuggestion(StrictModel):
    amenity: AmenityRead
    reason: str
    cost: int


class MatchResult(StrictModel):
    fully_matched: List[AmenityMatch] = Field(default_factory=list)
    partially_matched: List[AmenityMatch] = Field(default_factory=list)
    unmatched: List[AmenityMatch] = Field(default_factory=list)
    additional_amenities: List[AmenitySuggestion] = Field(default_factory=list)
    cost_breakdown: AmenityPricing = Field(default_factory=AmenityPricing)
    notice_requirements: NoticeSummary = Field(default_factory=NoticeSummary)
    restrictions: List[RestrictionSummary] = Field(default_factory=list)


class AvailabilityUpdate(StrictRequestModel):
    amenity_id: str
    quantity_available: Optional[int] = None
    is_active: Optional[bool] = None


class BulkUpdateSuccess(StrictModel):
    amenity_id: str
    name: str
    updated_fields: List[str]


class BulkUpdateFailure(StrictModel):
    amenity_id: str
    error: str


class BulkUpdateResult(StrictModel):
    successful_updates: List[BulkUpdateSuccess] = Field(default_factory=list)
    failed_updates: List[BulkUpdateFailure] = Field(default_factory=list)
    total_processed: int = 0
