from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from tweetline.logging import get_correlation_id
from tweetline.service.messages import UserMessages

_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "bad_request",
    "unauthorized",
    "forbidden",
    "not_found",
    "conflict",
    "server_error",
    "email_already_verified",
    "user_not_verified",
    "cannot_follow_yourself",
    "followed_user_not_found",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = (value or "").strip().lower()
    if not normalized:
        raise ValueError(UserMessages.EMAIL_REQUIRED)
    if len(normalized) > 254:
        raise ValueError(UserMessages.EMAIL_INVALID)
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        raise ValueError(UserMessages.EMAIL_INVALID)
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError(UserMessages.EMAIL_INVALID)
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError(UserMessages.EMAIL_INVALID)
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError(UserMessages.EMAIL_INVALID)
    return normalized


def _validate_name(value: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValueError(UserMessages.NAME_REQUIRED)
    if len(name) > 100:
        raise ValueError(UserMessages.NAME_LENGTH)
    return name


def _validate_password_strength(value: str) -> str:
    """6-50 characters with a lowercase, an uppercase, a digit and a symbol."""
    if not value:
        raise ValueError(UserMessages.PASSWORD_REQUIRED)
    if not 6 <= len(value) <= 50:
        raise ValueError(UserMessages.PASSWORD_LENGTH)
    checks = (
        any(ch.islower() for ch in value),
        any(ch.isupper() for ch in value),
        any(ch.isdigit() for ch in value),
        any(not ch.isalnum() and not ch.isspace() for ch in value),
    )
    if not all(checks):
        raise ValueError(UserMessages.PASSWORD_STRONG)
    return value


def _parse_date_of_birth(value: Any) -> Any:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValueError(UserMessages.DOB_IS_ISO8601) from None
    elif value is None or value == "":
        raise ValueError(UserMessages.DOB_REQUIRED)
    else:
        raise ValueError(UserMessages.DOB_IS_ISO8601)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_USERNAME_PATTERN = re.compile(r"^(?![0-9]+$)[A-Za-z0-9_]{4,15}$")


class _PasswordConfirmation(BaseModel):
    password: str = Field(default="", validate_default=True)
    confirm_password: str = Field(default="", validate_default=True)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)

    @field_validator("confirm_password")
    @classmethod
    def _confirm_matches(cls, value: str, info: ValidationInfo) -> str:
        if not value:
            raise ValueError(UserMessages.CONFIRM_PASSWORD_REQUIRED)
        password = info.data.get("password")
        if password is not None and value != password:
            raise ValueError(UserMessages.CONFIRM_PASSWORD_MISMATCH)
        return value


class LoginRequest(BaseModel):
    email: str = Field(default="", validate_default=True)
    password: str = Field(default="", validate_default=True)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError(UserMessages.PASSWORD_REQUIRED)
        return value


class RegisterRequest(_PasswordConfirmation):
    name: str = Field(default="", validate_default=True)
    email: str = Field(default="", validate_default=True)
    date_of_birth: Optional[datetime] = Field(default=None, validate_default=True)

    @field_validator("name")
    @classmethod
    def _validate_register_name(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _validate_date_of_birth(cls, value: Any) -> Any:
        return _parse_date_of_birth(value)


class RefreshTokenRequest(BaseModel):
    # Presence is checked by the refresh-token guard so it can answer 401
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class EmailVerifyRequest(BaseModel):
    email_verify_token: Optional[str] = Field(default=None, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(default="", validate_default=True)

    @field_validator("email")
    @classmethod
    def _validate_forgot_email(cls, value: str) -> str:
        return _validate_email(value)


class VerifyForgotPasswordRequest(BaseModel):
    forgot_password_token: Optional[str] = Field(default=None, max_length=4096)


class ResetPasswordRequest(_PasswordConfirmation):
    forgot_password_token: Optional[str] = Field(default=None, max_length=4096)


class ChangePasswordRequest(_PasswordConfirmation):
    old_password: str = Field(default="", validate_default=True)

    @field_validator("old_password")
    @classmethod
    def _require_old_password(cls, value: str) -> str:
        if not value:
            raise ValueError(UserMessages.PASSWORD_REQUIRED)
        return value


class FollowRequest(BaseModel):
    followed_user_id: Optional[str] = Field(default=None, max_length=64)


class UpdateMeRequest(BaseModel):
    """Profile patch; unknown keys are dropped, only sent keys are applied."""

    name: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    bio: Optional[str] = Field(default=None, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)
    website: Optional[str] = Field(default=None, max_length=200)
    username: Optional[str] = None
    avatar: Optional[str] = Field(default=None, max_length=400)
    cover_photo: Optional[str] = Field(default=None, max_length=400)

    @field_validator("name")
    @classmethod
    def _validate_update_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_name(value)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _validate_update_date_of_birth(cls, value: Any) -> Any:
        return None if value is None else _parse_date_of_birth(value)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not _USERNAME_PATTERN.match(value):
            raise ValueError(UserMessages.USERNAME_INVALID)
        return value

    def patch(self) -> dict:
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str


class UserProfileResponse(BaseModel):
    id: str
    email: str
    name: str
    date_of_birth: Optional[datetime] = None
    verify: int
    bio: str = ""
    location: str = ""
    website: str = ""
    username: str = ""
    avatar: str = ""
    cover_photo: str = ""
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    """Success payload: a human readable message and an optional result."""

    message: str
    result: Optional[Union[TokenPairResponse, UserProfileResponse]] = None
