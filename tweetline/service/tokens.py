"""Signed bearer tokens: RS256 JWTs with one key pair per token type."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tweetline.logging import get_logger
from tweetline.storage.models import TokenType, UserVerifyStatus, utcnow

logger = get_logger(__name__)

DEFAULT_ALGORITHM = "RS256"

_REQUIRED_CLAIMS = ["user_id", "token_type", "verify", "iat", "exp", "jti"]


class TokenError(Exception):
    """Base class for codec failures."""


class TokenExpired(TokenError):
    """Signature is valid but the ``exp`` claim is in the past."""


class TokenMalformed(TokenError):
    """Token cannot be decoded, has a bad signature, or is of the wrong type."""


class SigningError(TokenError):
    """Key or configuration misuse; never caused by caller input."""


@dataclass(frozen=True)
class SigningKey:
    token_type: TokenType
    private_key: str = field(repr=False)
    public_key: str
    ttl: timedelta
    issuer: str = "tweetline"
    algorithm: str = DEFAULT_ALGORITHM


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    token_type: TokenType
    verify: UserVerifyStatus
    iat: datetime
    exp: datetime
    jti: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def issue(
        cls,
        *,
        user_id: str,
        token_type: TokenType,
        verify: UserVerifyStatus,
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> "TokenPayload":
        # JWT timestamps have second resolution
        issued_at = (now or utcnow()).replace(microsecond=0)
        return cls(
            user_id=user_id,
            token_type=TokenType(token_type),
            verify=UserVerifyStatus(verify),
            iat=issued_at,
            exp=issued_at + ttl,
        )

    def to_claims(self, issuer: Optional[str] = None) -> Dict[str, Any]:
        claims: Dict[str, Any] = {
            "user_id": self.user_id,
            "token_type": int(self.token_type),
            "verify": int(self.verify),
            "iat": int(self.iat.timestamp()),
            "exp": int(self.exp.timestamp()),
            "jti": self.jti,
        }
        if issuer:
            claims["iss"] = issuer
        return claims

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "TokenPayload":
        try:
            return cls(
                user_id=str(claims["user_id"]),
                token_type=TokenType(int(claims["token_type"])),
                verify=UserVerifyStatus(int(claims["verify"])),
                iat=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
                exp=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
                jti=str(claims["jti"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed(f"invalid token claims: {exc}") from exc


def generate_private_key_pem(key_size: int = 2048) -> str:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_key_pem(private_key_pem: str) -> str:
    """Derive the PEM encoded public half of ``private_key_pem``."""
    try:
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("ascii"), password=None
        )
    except (TypeError, ValueError) as exc:
        raise SigningError(f"unreadable private key: {exc}") from exc
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


class TokenCodec:
    """Signs and verifies tokens.

    The codec holds the configured key for each token type but never picks
    one on its own when verifying: callers pass the key for the type they
    expect, and a token whose ``token_type`` claim disagrees is rejected.
    """

    def __init__(self, keys: Mapping[TokenType, SigningKey]) -> None:
        self._keys: Dict[TokenType, SigningKey] = dict(keys)

    @classmethod
    def from_settings(cls, settings) -> "TokenCodec":
        return cls({token_type: settings.signing_key(token_type) for token_type in TokenType})

    def key_for(self, token_type: TokenType) -> SigningKey:
        try:
            return self._keys[TokenType(token_type)]
        except KeyError as exc:
            raise SigningError(f"no signing key configured for {TokenType(token_type).name}") from exc

    def sign(self, payload: TokenPayload, key: SigningKey) -> str:
        if payload.token_type != key.token_type:
            raise SigningError(
                f"cannot sign {payload.token_type.name} with {key.token_type.name} key"
            )
        try:
            return jwt.encode(
                payload.to_claims(key.issuer), key.private_key, algorithm=key.algorithm
            )
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            logger.error("token_sign_failed", token_type=key.token_type.name, error=str(exc))
            raise SigningError(str(exc)) from exc

    def issue_with_payload(
        self,
        user_id: str,
        token_type: TokenType,
        verify: UserVerifyStatus,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[str, TokenPayload]:
        """Build a payload with the type's TTL and sign it with the type's key.

        Returns the signed token together with the payload it encodes, so
        callers that persist the token can reuse its expiry.
        """
        key = self.key_for(token_type)
        payload = TokenPayload.issue(
            user_id=user_id, token_type=token_type, verify=verify, ttl=key.ttl, now=now
        )
        return self.sign(payload, key), payload

    def issue(
        self,
        user_id: str,
        token_type: TokenType,
        verify: UserVerifyStatus,
        *,
        now: Optional[datetime] = None,
    ) -> str:
        token, _ = self.issue_with_payload(user_id, token_type, verify, now=now)
        return token

    def verify(self, token: str, key: SigningKey) -> TokenPayload:
        if not token or not isinstance(token, str):
            raise TokenMalformed("token is empty")
        try:
            claims = jwt.decode(
                token,
                key.public_key,
                algorithms=[key.algorithm],
                issuer=key.issuer,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenMalformed(str(exc) or "invalid token") from exc
        except jwt.PyJWTError as exc:
            logger.error("token_verify_key_error", token_type=key.token_type.name, error=str(exc))
            raise SigningError(str(exc)) from exc
        payload = TokenPayload.from_claims(claims)
        if payload.token_type != key.token_type:
            raise TokenMalformed(
                f"expected {key.token_type.name}, got {payload.token_type.name}"
            )
        return payload


__all__ = [
    "SigningError",
    "SigningKey",
    "TokenCodec",
    "TokenError",
    "TokenExpired",
    "TokenMalformed",
    "TokenPayload",
    "generate_private_key_pem",
    "public_key_pem",
]
