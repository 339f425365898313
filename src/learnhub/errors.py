"""Domain exceptions raised by service functions.

Routers translate these into HTTP responses via ``raise_http``.
"""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import HTTPException


class ServiceError(Exception):
    """Base class for expected, user-facing service failures."""

    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationFailedError(ServiceError):
    """Request is well-formed but violates a business rule."""

    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 409


class AccountLockedError(ServiceError):
    status_code = 429


class IntegrationError(ServiceError):
    """An external provider (M-Pesa, Google) failed in a way the caller must see."""

    status_code = 502


def raise_http(exc: ServiceError) -> NoReturn:
    """Re-raise a service error as an HTTPException."""
    detail: Any = exc.message
    if exc.extra:
        detail = {"message": exc.message, **exc.extra}
    raise HTTPException(status_code=exc.status_code, detail=detail) from exc
