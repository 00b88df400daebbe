"""Service layer: slot engines, capacity tracking, window administration and amenity matching."""
