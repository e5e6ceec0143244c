from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional


class ErrorStatus(IntEnum):
    """HTTP classification carried by every service error."""

    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each variant fixes its ``status`` classification and a stable
    ``error_code``; the boundary only maps these to a response and never
    inspects the message. Variant specific payload goes into ``detail``.
    """

    status: ErrorStatus = ErrorStatus.BAD_REQUEST
    error_code: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    @property
    def status_code(self) -> int:
        return int(self.status)


class ValidationError(ServiceError):
    """Request body failed field checks (422); ``errors`` maps field to message."""

    status = ErrorStatus.UNPROCESSABLE_ENTITY
    error_code = "validation_error"

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, str]] = None,
        *,
        error_code: Optional[str] = None,
    ) -> None:
        self.errors: Dict[str, str] = dict(errors or {})
        super().__init__(message, detail={"errors": self.errors}, error_code=error_code)


class BadRequestError(ServiceError):
    """Request is well formed but not acceptable in the current state (400)."""

    status = ErrorStatus.BAD_REQUEST
    error_code = "bad_request"


class AuthenticationError(ServiceError):
    """Missing, malformed, expired, forged or revoked credentials (401)."""

    status = ErrorStatus.UNAUTHORIZED
    error_code = "unauthorized"

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.reason = reason
        detail = {"reason": reason} if reason else None
        super().__init__(message, detail=detail, error_code=error_code)


class ForbiddenError(ServiceError):
    """Authenticated but not allowed, e.g. unverified account (403)."""

    status = ErrorStatus.FORBIDDEN
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested user or target does not exist (404)."""

    status = ErrorStatus.NOT_FOUND
    error_code = "not_found"


class ConflictError(ServiceError):
    """Uniqueness violated, e.g. duplicate email or username (409)."""

    status = ErrorStatus.CONFLICT
    error_code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.field = field
        detail = {"field": field} if field else None
        super().__init__(message, detail=detail, error_code=error_code)


class InternalError(ServiceError):
    """Store or codec failure not caused by caller input (500)."""

    status = ErrorStatus.INTERNAL_SERVER_ERROR
    error_code = "server_error"


__all__ = [
    "ErrorStatus",
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
]
