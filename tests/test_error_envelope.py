"""Tests for the error envelope format and the exception handlers.

Every error response has the shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from tweetline.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
    validation_errors_by_field,
)
from tweetline.api.schemas import Envelope, ErrorBody
from tweetline.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError as ServiceValidationError,
)
from tweetline.storage.errors import ConstraintViolation


class TestErrorBody:
    """Tests for the ErrorBody model."""

    def test_error_body_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Access token is required")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_with_details_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_error_body_rejects_unknown_code(self):
        """Codes outside the stable set are refused."""
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")

    def test_error_body_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")


class TestEnvelope:
    def test_envelope_ok_status(self):
        envelope = Envelope(status="ok", data={"message": "Login successful"})
        assert envelope.error is None
        assert envelope.data == {"message": "Login successful"}

    def test_envelope_request_id_auto_generated(self):
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36  # UUID format

    def test_envelope_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="success")


class TestErrorCodeMapping:
    """HTTP status to stable error code."""

    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "bad_request"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "validation_error"),
            (500, "server_error"),
        ],
    )
    def test_known_statuses(self, status, code):
        assert _error_code_for_status(status) == code

    def test_unknown_statuses_fall_back_by_class(self):
        assert _error_code_for_status(418) == "bad_request"
        assert _error_code_for_status(503) == "server_error"

    def test_every_mapped_code_is_a_valid_error_body_code(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="ok")


class TestErrorResponseFactory:
    def test_error_response_null_details(self):
        response = _error_response(404, "User not found", details=None)

        assert response.status_code == 404
        data = json.loads(response.body.decode())
        assert data["status"] == "error"
        assert data["error"] == {"code": "not_found", "message": "User not found", "details": None}
        assert data["request_id"]

    def test_error_response_custom_code(self):
        response = _error_response(400, "Email is already verified before", code="email_already_verified")
        data = json.loads(response.body.decode())
        assert data["error"]["code"] == "email_already_verified"


def test_validation_errors_collapse_to_one_message_per_field():
    errors = [
        {"loc": ("body", "email"), "msg": "Value error, Invalid email format"},
        {"loc": ("body", "email"), "msg": "second message is dropped"},
        {"loc": ("body",), "msg": "Field required"},
    ]
    assert validation_errors_by_field(errors) == {
        "email": "Invalid email format",
        "body": "Field required",
    }


class _Payload(BaseModel):
    count: int


def _app():
    app = FastAPI()
    register_exception_handlers(app)

    raisers = {
        "bad-request": BadRequestError("Cannot follow yourself", error_code="cannot_follow_yourself"),
        "unauthorized": AuthenticationError("Token expired", reason="token_expired"),
        "forbidden": ForbiddenError("User not verified", error_code="user_not_verified"),
        "not-found": NotFoundError("User not found"),
        "conflict": ConflictError("Email already exists", field="email"),
        "invalid": ServiceValidationError("Validation error", {"bio": "Too long"}),
        "internal": InternalError("token verification unavailable"),
        "constraint": ConstraintViolation("email already exists", {"field": "email"}),
        "crash": RuntimeError("connection to /srv/db failed"),
    }

    @app.get("/raise/{name}")
    async def _raise(name: str):
        raise raisers[name]

    @app.post("/payload")
    async def _payload(body: _Payload):
        return body

    return app


@pytest.fixture
def error_client():
    return TestClient(_app(), raise_server_exceptions=False)


@pytest.mark.parametrize(
    "name,status,code,details",
    [
        ("bad-request", 400, "cannot_follow_yourself", None),
        ("unauthorized", 401, "unauthorized", {"reason": "token_expired"}),
        ("forbidden", 403, "user_not_verified", None),
        ("not-found", 404, "not_found", None),
        ("conflict", 409, "conflict", {"field": "email"}),
        ("invalid", 422, "validation_error", {"errors": {"bio": "Too long"}}),
        ("internal", 500, "server_error", None),
        ("constraint", 409, "conflict", {"field": "email"}),
    ],
)
def test_typed_errors_map_to_status_and_code(error_client, name, status, code, details):
    response = error_client.get(f"/raise/{name}")

    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code
    assert body["error"]["details"] == details


def test_unexpected_exception_becomes_sanitized_server_error(error_client):
    response = error_client.get("/raise/crash")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "server_error"
    assert error["message"] == "Internal server error"
    assert "/srv/db" not in error["details"]["error"]


def test_request_validation_uses_field_map(error_client):
    response = error_client.post("/payload", json={"count": "many"})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "validation_error"
    assert set(error["details"]["errors"]) == {"count"}


def test_unknown_route_uses_envelope(error_client):
    response = error_client.get("/missing")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"
