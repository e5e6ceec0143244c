"""Guards that run before a protected operation.

Each guard is an async callable taking a :class:`RequestContext` and
returning a new one with whatever it decoded or resolved attached. A guard
signals failure by raising a :class:`ServiceError`; :func:`run_guards` lets
that propagate, so later guards never execute.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, Optional

from tweetline.logging import get_logger
from tweetline.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)
from tweetline.service.messages import UserMessages
from tweetline.service.passwords import PasswordService
from tweetline.service.sessions import normalize_email
from tweetline.service.stores import TokenStore, UserDirectory, maybe_await
from tweetline.service.tokens import (
    SigningError,
    TokenCodec,
    TokenExpired,
    TokenMalformed,
    TokenPayload,
)
from tweetline.storage.models import TokenType, User, UserVerifyStatus

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    authorization: Optional[str] = None
    body: Mapping[str, Any] = field(default_factory=dict)
    path_params: Mapping[str, str] = field(default_factory=dict)
    decoded_authorization: Optional[TokenPayload] = None
    decoded_refresh_token: Optional[TokenPayload] = None
    decoded_email_verify_token: Optional[TokenPayload] = None
    decoded_forgot_password_token: Optional[TokenPayload] = None
    # Account the request acts on, once a guard has loaded it
    user: Optional[User] = None
    target_user: Optional[User] = None

    def body_str(self, name: str) -> str:
        value = self.body.get(name)
        return value.strip() if isinstance(value, str) else ""


Guard = Callable[[RequestContext], Awaitable[RequestContext]]


async def run_guards(ctx: RequestContext, *guards: Guard) -> RequestContext:
    for guard in guards:
        ctx = await guard(ctx)
    return ctx


def _capitalize(message: str) -> str:
    return message[:1].upper() + message[1:] if message else message


class VerificationPipeline:
    """Guard implementations bound to the codec and stores they consult."""

    def __init__(
        self,
        codec: TokenCodec,
        users: UserDirectory,
        tokens: TokenStore,
        passwords: PasswordService,
    ) -> None:
        self.codec = codec
        self.users = users
        self.tokens = tokens
        self.passwords = passwords

    def _decode(self, token: str, token_type: TokenType) -> TokenPayload:
        try:
            return self.codec.verify(token, self.codec.key_for(token_type))
        except TokenExpired as exc:
            raise AuthenticationError(_capitalize(str(exc)), reason="token_expired") from exc
        except TokenMalformed as exc:
            raise AuthenticationError(_capitalize(str(exc)), reason="token_invalid") from exc
        except SigningError as exc:
            logger.error("token_key_misconfigured", token_type=token_type.name, error=str(exc))
            raise InternalError("token verification unavailable") from exc

    def _load_user(self, user_id: str) -> User:
        user = self.users.get_user(user_id)
        if not user:
            raise NotFoundError(UserMessages.USER_NOT_FOUND)
        return user

    async def access_token_guard(self, ctx: RequestContext) -> RequestContext:
        parts = (ctx.authorization or "").split(" ")
        token = parts[1].strip() if len(parts) > 1 else ""
        if not token:
            raise AuthenticationError(
                UserMessages.ACCESS_TOKEN_REQUIRED, reason="access_token_required"
            )
        decoded = self._decode(token, TokenType.ACCESS_TOKEN)
        return replace(ctx, decoded_authorization=decoded)

    async def refresh_token_guard(self, ctx: RequestContext) -> RequestContext:
        token = ctx.body_str("refresh_token")
        if not token:
            raise AuthenticationError(
                UserMessages.REFRESH_TOKEN_REQUIRED, reason="refresh_token_required"
            )

        async def _verify() -> TokenPayload:
            return self._decode(token, TokenType.REFRESH_TOKEN)

        async def _lookup():
            return await maybe_await(self.tokens.get_refresh_token(token))

        decoded, record = await asyncio.gather(_verify(), _lookup(), return_exceptions=True)
        if isinstance(record, BaseException):
            raise record
        # Expiry wins over absence since stores drop records past their exp
        if isinstance(decoded, AuthenticationError) and decoded.reason == "token_expired":
            raise decoded
        # A revoked or rotated token is rejected the same way as one never issued
        if record is None:
            raise AuthenticationError(
                UserMessages.USED_REFRESH_TOKEN_OR_NOT_EXIST,
                reason="used_refresh_token_or_not_exist",
            )
        if isinstance(decoded, BaseException):
            raise decoded
        if record.user_id != decoded.user_id:
            logger.warning("refresh_token_owner_mismatch", user_id=decoded.user_id)
            raise AuthenticationError(
                UserMessages.REFRESH_TOKEN_INVALID, reason="token_invalid"
            )
        return replace(ctx, decoded_refresh_token=decoded)

    async def email_verify_token_guard(self, ctx: RequestContext) -> RequestContext:
        token = ctx.body_str("email_verify_token")
        if not token:
            raise AuthenticationError(
                UserMessages.EMAIL_VERIFY_TOKEN_REQUIRED, reason="email_verify_token_required"
            )
        decoded = self._decode(token, TokenType.EMAIL_VERIFY_TOKEN)
        return replace(ctx, decoded_email_verify_token=decoded)

    async def email_not_verified_guard(self, ctx: RequestContext) -> RequestContext:
        """Load the account being verified and stop if it already is.

        Works after either the email-verify-token guard (verify-email) or the
        access-token guard (resend-verify-email).
        """
        claims = ctx.decoded_email_verify_token or ctx.decoded_authorization
        if claims is None:
            raise AuthenticationError(
                UserMessages.ACCESS_TOKEN_REQUIRED, reason="access_token_required"
            )
        user = self._load_user(claims.user_id)
        if user.verify == UserVerifyStatus.VERIFIED or not user.email_verify_token:
            raise BadRequestError(
                UserMessages.EMAIL_ALREADY_VERIFIED_BEFORE, error_code="email_already_verified"
            )
        presented = ctx.body_str("email_verify_token")
        if ctx.decoded_email_verify_token is not None and presented != user.email_verify_token:
            # Superseded by a resend
            raise AuthenticationError(
                UserMessages.EMAIL_VERIFY_TOKEN_INVALID, reason="email_verify_token_superseded"
            )
        return replace(ctx, user=user)

    async def forgot_password_email_guard(self, ctx: RequestContext) -> RequestContext:
        user = self.users.get_user_by_email(normalize_email(ctx.body_str("email")))
        if not user:
            raise NotFoundError(UserMessages.USER_NOT_FOUND)
        return replace(ctx, user=user)

    async def forgot_password_token_guard(self, ctx: RequestContext) -> RequestContext:
        token = ctx.body_str("forgot_password_token")
        if not token:
            raise AuthenticationError(
                UserMessages.FORGOT_PASSWORD_TOKEN_IS_REQUIRED,
                reason="forgot_password_token_required",
            )
        decoded = self._decode(token, TokenType.FORGOT_PASSWORD_TOKEN)
        user = self._load_user(decoded.user_id)
        if user.forgot_password_token != token:
            raise AuthenticationError(
                UserMessages.INVALID_FORGOT_PASSWORD_TOKEN,
                reason="forgot_password_token_mismatch",
            )
        return replace(ctx, decoded_forgot_password_token=decoded, user=user)

    async def verified_user_guard(self, ctx: RequestContext) -> RequestContext:
        claims = ctx.decoded_authorization
        if claims is None:
            raise AuthenticationError(
                UserMessages.ACCESS_TOKEN_REQUIRED, reason="access_token_required"
            )
        if claims.verify != UserVerifyStatus.VERIFIED:
            raise ForbiddenError(UserMessages.USER_NOT_VERIFIED, error_code="user_not_verified")
        return ctx

    async def credential_guard(self, ctx: RequestContext) -> RequestContext:
        user = self.users.get_user_by_email(normalize_email(ctx.body_str("email")))
        password = ctx.body.get("password")
        # Unknown emails still pay for one argon2 check
        stored_hash = user.password if user else self.passwords.dummy_hash
        matched = False
        if isinstance(password, str):
            matched = await asyncio.to_thread(self.passwords.verify, stored_hash, password)
        if not matched or user is None:
            # Same answer for an unknown email and a wrong password
            raise AuthenticationError(
                UserMessages.EMAIL_OR_PASSWORD_INCORRECT, reason="password_incorrect"
            )
        return replace(ctx, user=user)

    async def old_password_guard(self, ctx: RequestContext) -> RequestContext:
        claims = ctx.decoded_authorization
        if claims is None:
            raise AuthenticationError(
                UserMessages.ACCESS_TOKEN_REQUIRED, reason="access_token_required"
            )
        user = self._load_user(claims.user_id)
        old_password = ctx.body.get("old_password")
        if not isinstance(old_password, str) or not await asyncio.to_thread(
            self.passwords.verify, user.password, old_password
        ):
            raise AuthenticationError(
                UserMessages.OLD_PASSWORD_NOT_MATCH, reason="old_password_not_match"
            )
        return replace(ctx, user=user)

    async def email_available_guard(self, ctx: RequestContext) -> RequestContext:
        # Advisory only; create_user enforces uniqueness
        if self.users.email_exists(normalize_email(ctx.body_str("email"))):
            raise ConflictError(UserMessages.EMAIL_EXISTS, field="email")
        return ctx

    async def target_user_guard(self, ctx: RequestContext) -> RequestContext:
        raw_id = ctx.path_params.get("user_id") or ctx.body_str("followed_user_id")
        try:
            target_id = str(uuid.UUID(str(raw_id)))
        except ValueError:
            raise NotFoundError(
                UserMessages.FOLLOWED_USER_NOT_FOUND, error_code="followed_user_not_found"
            ) from None
        target = self.users.get_user(target_id)
        if not target:
            raise NotFoundError(
                UserMessages.FOLLOWED_USER_NOT_FOUND, error_code="followed_user_not_found"
            )
        return replace(ctx, target_user=target)


__all__ = ["Guard", "RequestContext", "VerificationPipeline", "run_guards"]
