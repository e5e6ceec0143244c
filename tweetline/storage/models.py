from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserVerifyStatus(IntEnum):
    """Account verification state; ``Banned`` is terminal."""

    UNVERIFIED = 0
    VERIFIED = 1
    BANNED = 2


class TokenType(IntEnum):
    ACCESS_TOKEN = 0
    REFRESH_TOKEN = 1
    FORGOT_PASSWORD_TOKEN = 2
    EMAIL_VERIFY_TOKEN = 3


# Fields a user may change through the self-update operation
PROFILE_FIELDS = (
    "name",
    "date_of_birth",
    "bio",
    "location",
    "website",
    "username",
    "avatar",
    "cover_photo",
)

# Fields the session layer may patch: the profile plus credentials and pending tokens
UPDATABLE_USER_FIELDS = frozenset(
    PROFILE_FIELDS
    + ("password", "verify", "email_verify_token", "forgot_password_token")
)


@dataclass
class User:
    id: str
    email: str
    password: str
    name: str = ""
    date_of_birth: Optional[datetime] = None
    verify: UserVerifyStatus = UserVerifyStatus.UNVERIFIED
    email_verify_token: str = ""
    forgot_password_token: str = ""
    bio: str = ""
    location: str = ""
    website: str = ""
    username: str = ""
    avatar: str = ""
    cover_photo: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        *,
        email: str,
        password: str,
        name: str = "",
        date_of_birth: Optional[datetime] = None,
        email_verify_token: str = "",
        user_id: Optional[str] = None,
    ) -> "User":
        now = utcnow()
        return cls(
            id=user_id or str(uuid.uuid4()),
            email=email,
            password=password,
            name=name,
            date_of_birth=date_of_birth,
            email_verify_token=email_verify_token,
            created_at=now,
            updated_at=now,
        )

    def public_profile(self) -> dict:
        """Profile view without credentials or pending tokens."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "date_of_birth": self.date_of_birth,
            "verify": int(self.verify),
            "bio": self.bio,
            "location": self.location,
            "website": self.website,
            "username": self.username,
            "avatar": self.avatar,
            "cover_photo": self.cover_photo,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RefreshToken:
    user_id: str
    token: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


@dataclass
class Follower:
    user_id: str
    followed_user_id: str
    created_at: datetime = field(default_factory=utcnow)
