# backend/booking_engine/core/exceptions.py
"""
Domain-specific exceptions for the booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.

Capacity shortfalls are deliberately absent: reserve/block return False
and the caller decides what to tell the client.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException carrying message, code and details."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class ConfigurationError(ValidationException):
    """Raised when an availability window is malformed (never persisted)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **context: Any):
        details: Dict[str, Any] = dict(context)
        if field:
            details["field"] = field
        super().__init__(message=message, code="INVALID_WINDOW_CONFIGURATION", details=details)


class WindowConflictError(ConflictException):
    """Raised when a window change hits a critical conflict without an explicit override."""

    def __init__(self, conflicts: List[Dict[str, Any]], message: Optional[str] = None):
        super().__init__(
            message=message
            or "Availability window conflicts with a maintenance window; pass force=True to override",
            code="WINDOW_CONFLICT",
            details={"conflicts": conflicts},
        )


class DependencyError(ConflictException):
    """Raised when deleting a window or amenity that still has active dependents."""

    def __init__(self, resource: str, dependencies: List[Any], message: Optional[str] = None):
        super().__init__(
            message=message
            or f"Cannot delete {resource}: it has {len(dependencies)} active dependent(s)",
            code="HAS_DEPENDENCIES",
            details={"resource": resource, "dependencies": dependencies},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
