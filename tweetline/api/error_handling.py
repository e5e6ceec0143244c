from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tweetline.api.schemas import Envelope, ErrorBody
from tweetline.logging import get_logger, sanitize_error_message
from tweetline.service.errors import ErrorStatus, ServiceError
from tweetline.service.messages import CommonMessages
from tweetline.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    ErrorStatus.BAD_REQUEST: "bad_request",
    ErrorStatus.UNAUTHORIZED: "unauthorized",
    ErrorStatus.FORBIDDEN: "forbidden",
    ErrorStatus.NOT_FOUND: "not_found",
    ErrorStatus.CONFLICT: "conflict",
    ErrorStatus.UNPROCESSABLE_ENTITY: "validation_error",
    ErrorStatus.INTERNAL_SERVER_ERROR: "server_error",
}

_PYDANTIC_VALUE_ERROR_PREFIX = "Value error, "


def _error_code_for_status(status_code: int) -> str:
    try:
        return _STATUS_TO_CODE[ErrorStatus(status_code)]
    except ValueError:
        return "server_error" if status_code >= 500 else "bad_request"


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def validation_errors_by_field(errors: list[dict]) -> dict[str, str]:
    """Collapse pydantic error entries into one message per body field."""
    by_field: dict[str, str] = {}
    for entry in errors:
        loc = [part for part in entry.get("loc", ()) if part not in ("body", "query", "path")]
        field = str(loc[-1]) if loc else "body"
        message = str(entry.get("msg", CommonMessages.VALIDATION_ERROR))
        if message.startswith(_PYDANTIC_VALUE_ERROR_PREFIX):
            message = message[len(_PYDANTIC_VALUE_ERROR_PREFIX):]
        by_field.setdefault(field, message)
    return by_field


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for domain and storage errors."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(exc.status_code, exc.message, exc.detail or None, code=exc.error_code)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = validation_errors_by_field(list(exc.errors()))
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            fields=sorted(errors),
        )
        return _error_response(
            422,
            CommonMessages.VALIDATION_ERROR,
            {"errors": errors},
            code="validation_error",
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        details = exc.detail if isinstance(exc.detail, dict) else None
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message, details)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(
            500,
            CommonMessages.INTERNAL_ERROR,
            {"error": sanitize_error_message(str(exc))},
            code="server_error",
        )
