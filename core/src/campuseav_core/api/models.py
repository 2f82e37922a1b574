from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from campuseav_core.errors import (
    AttributeNotFound,
    ConstraintViolation,
    EavError,
    EntityTypeNotFound,
    GroupNotFound,
    InvalidValueKind,
    SchemaError,
    TransactionError,
    ValidationError,
)


class ApiError(BaseModel):
    code: str
    message: str
    details: Any | None = None


class ApiResponse[T](BaseModel):
    ok: bool
    data: T | None = None
    error: ApiError | None = None


def ok[T](data: T) -> ApiResponse[T]:
    return ApiResponse(ok=True, data=data)


def fail(*, code: str, message: str, details: Any | None = None) -> ApiResponse[None]:
    return ApiResponse(ok=False, error=ApiError(code=code, message=message, details=details))


# Most specific first.
_ERROR_STATUS: list[tuple[type[EavError], int]] = [
    (AttributeNotFound, 404),
    (EntityTypeNotFound, 404),
    (GroupNotFound, 404),
    (ValidationError, 422),
    (InvalidValueKind, 422),
    (ConstraintViolation, 409),
    (SchemaError, 400),
    (TransactionError, 500),
]


def status_for_error(err: EavError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(err, error_type):
            return status_code
    return 500


def fail_from_error(err: EavError) -> ApiResponse[None]:
    return fail(code=err.code, message=err.message, details=err.details())
