from __future__ import annotations

import secrets
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from tweetline.logging import get_logger

logger = get_logger(__name__)


class PasswordService:
    """argon2id hashing; the stored value is the encoded hash string only."""

    def __init__(self, hasher: Optional[PasswordHasher] = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None

    @classmethod
    def fast(cls) -> "PasswordService":
        """Cheap parameters for test runs."""
        return cls(PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID))

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    @property
    def dummy_hash(self) -> str:
        """Hash of a random secret, checked when no account matches a login."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(secrets.token_urlsafe(32))
        return self._dummy_hash

    def verify(self, stored_hash: str, password: str) -> bool:
        if not stored_hash:
            return False
        try:
            return self._hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unreadable")
            return False
