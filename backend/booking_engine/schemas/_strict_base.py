"""Strict schema baselines with forbidden extras by default."""

from enum import Enum
from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.exceptions import ValidationException

M = TypeVar("M", bound=BaseModel)


class StrictModel(BaseModel):
    """Neutral strict base for response DTOs."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


def _error_list(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def parse_request(
    model: Type[M],
    data: Any,
    exception_class: Type[ValidationException] = ValidationException,
) -> M:
    """
    Validate ``data`` (a dict or an instance of ``model``) into ``model``.

    Pydantic errors are re-raised as ``exception_class`` so callers only ever
    see domain exceptions.
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = _error_list(exc)
        first = errors[0]["message"] if errors else "Invalid data"
        if exception_class is ValidationException:
            raise ValidationException(first, code="VALIDATION_ERROR", details={"errors": errors})
        raise exception_class(first, errors=errors)


def column_values(model: BaseModel, **dump_kwargs: Any) -> Dict[str, Any]:
    """Dump ``model`` for an ORM constructor, storing enums by value."""
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in model.model_dump(**dump_kwargs).items()
    }
