from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from tweetline.logging import get_logger
from tweetline.service.email import EmailService
from tweetline.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from tweetline.service.messages import CommonMessages, UserMessages
from tweetline.service.passwords import PasswordService
from tweetline.service.stores import TokenStore, UserDirectory, maybe_await
from tweetline.service.tokens import TokenCodec
from tweetline.storage.errors import ConstraintViolation
from tweetline.storage.models import (
    PROFILE_FIELDS,
    Follower,
    RefreshToken,
    TokenType,
    User,
    UserVerifyStatus,
    utcnow,
)

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def as_dict(self) -> Dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


def _conflict_from(exc: ConstraintViolation) -> ConflictError:
    if exc.field == "username":
        return ConflictError(UserMessages.USERNAME_EXISTS, field="username")
    if exc.field == "email":
        return ConflictError(UserMessages.EMAIL_EXISTS, field="email")
    return ConflictError(exc.message, field=exc.field)


class SessionManager:
    """Registration, login, token rotation and the account verification states.

    Credentials and tokens are checked by the verification pipeline before
    any of these operations run; the manager trusts the ids and claims it
    is handed and only reads or mutates the stores.
    """

    def __init__(
        self,
        users: UserDirectory,
        tokens: TokenStore,
        codec: TokenCodec,
        passwords: PasswordService,
        *,
        email: Optional[EmailService] = None,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.codec = codec
        self.passwords = passwords
        self.email = email or EmailService()
        self.logger = logger

    async def _issue_pair(self, user_id: str, verify: UserVerifyStatus) -> TokenPair:
        now = utcnow()
        access_token = self.codec.issue(user_id, TokenType.ACCESS_TOKEN, verify, now=now)
        refresh_token, refresh_payload = self.codec.issue_with_payload(
            user_id, TokenType.REFRESH_TOKEN, verify, now=now
        )
        await maybe_await(
            self.tokens.put_refresh_token(
                RefreshToken(
                    user_id=user_id,
                    token=refresh_token,
                    created_at=now,
                    expires_at=refresh_payload.exp,
                )
            )
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def _dispatch(
        self, send: Callable[[str, str], bool], address: str, token: str, *, kind: str
    ) -> bool:
        # SMTP is blocking; delivery problems never fail the request
        try:
            delivered = await asyncio.to_thread(send, address, token)
        except Exception as exc:
            self.logger.error("email_dispatch_failed", kind=kind, error=str(exc))
            return False
        if not delivered:
            self.logger.warning("email_not_delivered", kind=kind)
        return bool(delivered)

    def _require_user(self, user_id: str) -> User:
        user = self.users.get_user(user_id)
        if not user:
            raise NotFoundError(UserMessages.USER_NOT_FOUND)
        return user

    def _update(self, user_id: str, patch: Dict[str, Any]) -> User:
        try:
            user = self.users.update_user(user_id, patch)
        except ConstraintViolation as exc:
            raise _conflict_from(exc) from exc
        if not user:
            raise NotFoundError(UserMessages.USER_NOT_FOUND)
        return user

    async def register(
        self,
        *,
        name: str,
        email: str,
        password: str,
        date_of_birth: Optional[datetime] = None,
    ) -> TokenPair:
        user = User.new(
            email=normalize_email(email),
            password=self.passwords.hash(password),
            name=name,
            date_of_birth=date_of_birth,
        )
        email_verify_token = self.codec.issue(
            user.id, TokenType.EMAIL_VERIFY_TOKEN, UserVerifyStatus.UNVERIFIED
        )
        user.email_verify_token = email_verify_token
        try:
            self.users.create_user(user)
        except ConstraintViolation as exc:
            raise _conflict_from(exc) from exc
        pair = await self._issue_pair(user.id, UserVerifyStatus.UNVERIFIED)
        self.logger.info("user_registered", user_id=user.id)
        await self._dispatch(
            self.email.send_email_verification,
            user.email,
            email_verify_token,
            kind="email_verification",
        )
        return pair

    async def login(self, user_id: str, verify: UserVerifyStatus) -> TokenPair:
        pair = await self._issue_pair(user_id, UserVerifyStatus(verify))
        self.logger.info("user_logged_in", user_id=user_id)
        return pair

    async def logout(self, refresh_token: str) -> bool:
        removed = await maybe_await(self.tokens.delete_refresh_token(refresh_token))
        self.logger.info("user_logged_out", revoked=removed)
        return removed

    async def refresh(
        self, old_refresh_token: str, *, user_id: str, verify: UserVerifyStatus
    ) -> TokenPair:
        """Rotate a refresh token.

        The old record is deleted before anything is issued; only the caller
        whose delete actually removed it gets a new pair, so two concurrent
        refreshes of one token can never both succeed.
        """
        removed = await maybe_await(self.tokens.delete_refresh_token(old_refresh_token))
        if not removed:
            self.logger.warning("refresh_token_reuse_rejected", user_id=user_id)
            raise AuthenticationError(
                UserMessages.USED_REFRESH_TOKEN_OR_NOT_EXIST,
                reason="used_refresh_token_or_not_exist",
            )
        pair = await self._issue_pair(user_id, UserVerifyStatus(verify))
        self.logger.info("refresh_token_rotated", user_id=user_id)
        return pair

    async def verify_email(self, user_id: str) -> TokenPair:
        self._update(
            user_id,
            {"email_verify_token": "", "verify": UserVerifyStatus.VERIFIED},
        )
        pair = await self._issue_pair(user_id, UserVerifyStatus.VERIFIED)
        self.logger.info("email_verified", user_id=user_id)
        return pair

    async def resend_verify_email(self, user_id: str) -> None:
        user = self._require_user(user_id)
        token = self.codec.issue(user.id, TokenType.EMAIL_VERIFY_TOKEN, user.verify)
        self._update(user.id, {"email_verify_token": token})
        self.logger.info("email_verification_resent", user_id=user.id)
        await self._dispatch(
            self.email.send_email_verification, user.email, token, kind="email_verification"
        )

    async def forgot_password(self, user_id: str) -> None:
        user = self._require_user(user_id)
        token = self.codec.issue(user.id, TokenType.FORGOT_PASSWORD_TOKEN, user.verify)
        self._update(user.id, {"forgot_password_token": token})
        self.logger.info("password_reset_requested", user_id=user.id)
        await self._dispatch(
            self.email.send_password_reset, user.email, token, kind="password_reset"
        )

    async def reset_password(self, user_id: str, new_password: str) -> None:
        self._update(
            user_id,
            {"password": self.passwords.hash(new_password), "forgot_password_token": ""},
        )
        self.logger.info("password_reset_completed", user_id=user_id)

    async def change_password(self, user_id: str, new_password: str) -> None:
        self._update(user_id, {"password": self.passwords.hash(new_password)})
        self.logger.info("password_changed", user_id=user_id)

    async def follow(self, user_id: str, followed_user_id: str) -> Follower:
        if user_id == followed_user_id:
            raise BadRequestError(
                UserMessages.CANNOT_FOLLOW_YOURSELF, error_code="cannot_follow_yourself"
            )
        try:
            edge = self.users.add_follower(
                Follower(user_id=user_id, followed_user_id=followed_user_id)
            )
        except ConstraintViolation as exc:
            raise ConflictError(
                UserMessages.FOLLOWED_BEFORE, field="followed_user_id"
            ) from exc
        self.logger.info("user_followed", user_id=user_id, followed_user_id=followed_user_id)
        return edge

    async def unfollow(self, user_id: str, followed_user_id: str) -> bool:
        removed = self.users.remove_follower(user_id, followed_user_id)
        self.logger.info(
            "user_unfollowed",
            user_id=user_id,
            followed_user_id=followed_user_id,
            removed=removed,
        )
        return removed

    async def get_me(self, user_id: str) -> Dict[str, Any]:
        return self._require_user(user_id).public_profile()

    async def get_profile(self, username: str) -> Dict[str, Any]:
        user = self.users.get_user_by_username(username)
        if not user:
            raise NotFoundError(UserMessages.USER_NOT_FOUND)
        return user.public_profile()

    async def update_me(self, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        rejected = {name: "Field cannot be updated" for name in patch if name not in PROFILE_FIELDS}
        if rejected:
            raise ValidationError(CommonMessages.VALIDATION_ERROR, rejected)
        user = self._update(user_id, dict(patch))
        self.logger.info("profile_updated", user_id=user_id, fields=sorted(patch))
        return user.public_profile()


__all__ = ["SessionManager", "TokenPair", "normalize_email"]
