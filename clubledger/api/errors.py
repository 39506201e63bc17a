"""
clubledger.api.errors — Outcome → HTTP mapping
===============================================

Core operations return typed failures; handlers pass every outcome through
:func:`unwrap`, which hands successes back and raises ``HTTPException`` with
a structured ``{"code": ..., ...}`` detail for failures.
"""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException, status

from clubledger.engine.outcomes import (
    AlreadyProcessed,
    Failure,
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    NotPermitted,
    OutOfStock,
    StaleConflict,
)

T = TypeVar("T")

STATUS_CODES: dict[type[Failure], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    NotPermitted: status.HTTP_403_FORBIDDEN,
    InsufficientBalance: status.HTTP_400_BAD_REQUEST,
    OutOfStock: status.HTTP_400_BAD_REQUEST,
    InvalidTransition: status.HTTP_400_BAD_REQUEST,
    AlreadyProcessed: status.HTTP_409_CONFLICT,
    StaleConflict: status.HTTP_409_CONFLICT,
}


def failure_to_http(failure: Failure) -> HTTPException:
    return HTTPException(
        STATUS_CODES.get(type(failure), status.HTTP_400_BAD_REQUEST),
        detail=failure.to_dict(),
    )


def unwrap(outcome: T | Failure) -> T:
    """Return *outcome* unchanged, or raise it as an HTTP error."""
    if isinstance(outcome, Failure):
        raise failure_to_http(outcome)
    return outcome


def invalid_request(exc: ValueError) -> HTTPException:
    """Service-level input validation error → 422."""
    return HTTPException(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"code": "INVALID_REQUEST", "message": str(exc)},
    )
