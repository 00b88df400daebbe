# backend/tests/unit/core/test_exceptions.py
"""Domain exceptions and their HTTP mapping."""

from fastapi import HTTPException

from booking_engine.core.exceptions import (
    ConfigurationError,
    DependencyError,
    NotFoundException,
    ServiceException,
    ValidationException,
    WindowConflictError,
)


class TestDomainExceptions:
    def test_code_defaults_to_class_name(self):
        exc = NotFoundException("Service x not found")
        assert exc.code == "NotFoundException"
        assert exc.details == {}
        assert str(exc) == "Service x not found"

    def test_to_http_exception_carries_message_code_and_details(self):
        exc = ValidationException("Bad range", code="INVALID_DATE_RANGE", details={"days": 120})
        http_exc = exc.to_http_exception()

        assert isinstance(http_exc, HTTPException)
        assert http_exc.status_code == 400
        assert http_exc.detail == {
            "message": "Bad range",
            "code": "INVALID_DATE_RANGE",
            "details": {"days": 120},
        }

    def test_service_exception_is_a_500(self):
        http_exc = ServiceException("Database operation failed").to_http_exception()
        assert http_exc.status_code == 500
        assert http_exc.detail["message"] == "Database operation failed"


class TestSpecificExceptions:
    def test_configuration_error_records_field(self):
        exc = ConfigurationError("Slot duration must be positive", field="slot_duration_minutes")
        assert isinstance(exc, ValidationException)
        assert exc.code == "INVALID_WINDOW_CONFIGURATION"
        assert exc.details == {"field": "slot_duration_minutes"}
        assert exc.to_http_exception().status_code == 400

    def test_window_conflict_error_is_a_409_listing_conflicts(self):
        conflicts = [{"window_id": "w1", "severity": "critical"}]
        exc = WindowConflictError(conflicts)
        http_exc = exc.to_http_exception()

        assert http_exc.status_code == 409
        assert http_exc.detail["code"] == "WINDOW_CONFLICT"
        assert http_exc.detail["details"]["conflicts"] == conflicts

    def test_dependency_error_default_message(self):
        exc = DependencyError("amenity", ["b1", "b2"])
        assert exc.status_code == 409
        assert exc.code == "HAS_DEPENDENCIES"
        assert "2 active dependent(s)" in exc.message
        assert exc.details == {"resource": "amenity", "dependencies": ["b1", "b2"]}
