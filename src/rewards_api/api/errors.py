"""Translate typed service failures into HTTP errors."""

from __future__ import annotations

from datetime import datetime
from typing import Any, NoReturn, Protocol

from fastapi import HTTPException, status

from rewards_api.services.rewards.results import ErrorCategory


class _Failure(Protocol):
    message: str

    @property
    def category(self) -> ErrorCategory: ...


CATEGORY_STATUS = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.ALREADY_USED: status.HTTP_409_CONFLICT,
    ErrorCategory.EXPIRED: status.HTTP_410_GONE,
    ErrorCategory.INELIGIBLE_ACCOUNT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.INSUFFICIENT_AVAILABILITY: status.HTTP_409_CONFLICT,
    ErrorCategory.TRANSIENT_STORE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.UNAUTHENTICATED: status.HTTP_403_FORBIDDEN,
}

RATE_LIMIT_CODES = frozenset({"FREQUENCY_LIMIT", "RATE_LIMITED", "PER_USER_LIMIT"})


def raise_for_failure(failure: _Failure, **extra: Any) -> NoReturn:
    code = getattr(failure, "code")
    code_value = getattr(code, "value", str(code))
    status_code = CATEGORY_STATUS[failure.category]
    if code_value in RATE_LIMIT_CODES:
        status_code = status.HTTP_429_TOO_MANY_REQUESTS

    detail: dict[str, Any] = {
        "error": code_value,
        "category": failure.category.value,
        "message": failure.message,
    }
    for key, value in extra.items():
        if value is not None:
            detail[key] = value.isoformat() if isinstance(value, datetime) else value
    raise HTTPException(status_code=status_code, detail=detail)
