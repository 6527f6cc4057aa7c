# app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException


class FundingError(ValueError):
    """
    Base class for workflow failures surfaced to the caller.

    Subclasses ValueError so service callers that only know the
    "ValueError -> 409" convention still treat it as a business rule failure.
    """

    code = "FUNDING_ERROR"
    status_code = 409

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.field:
            detail["field"] = self.field
        return detail


class ValidationError(FundingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotEligibleError(FundingError):
    code = "NOT_ELIGIBLE"
    status_code = 409


class AlreadyDecidedError(FundingError):
    code = "ALREADY_DECIDED"
    status_code = 409


class NotFoundError(FundingError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientFundsError(FundingError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402


class InvalidStateError(FundingError):
    code = "INVALID_STATE"
    status_code = 409


class ConflictError(FundingError):
    """The record changed between read and write; the caller may re-issue."""

    code = "CONFLICT"
    status_code = 409


def to_http(exc: FundingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
