"""Unit tests for the session manager.

Covers registration, login, refresh rotation (including two refreshes
racing on one token), logout, the email verification state machine,
password reset and change, and follow edges.
"""

import asyncio

import pytest

from tweetline.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from tweetline.service.pipeline import RequestContext, VerificationPipeline, run_guards
from tweetline.service.sessions import SessionManager
from tweetline.storage.memory import MemoryStore
from tweetline.storage.models import TokenType, UserVerifyStatus

PASSWORD = "Abc123!@"


class RecordingEmail:
    """Collects outbound messages instead of sending them."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def _record(self, kind, address, token):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append((kind, address, token))
        return True

    def send_email_verification(self, to_email, token):
        return self._record("verify", to_email, token)

    def send_password_reset(self, to_email, token):
        return self._record("reset", to_email, token)


@pytest.fixture
def store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def outbox():
    return RecordingEmail()


@pytest.fixture
def manager(store, codec, passwords, outbox):
    return SessionManager(store, store, codec, passwords, email=outbox)


@pytest.fixture
def pipeline(store, codec, passwords):
    return VerificationPipeline(codec, store, store, passwords)


def _decode(codec, token, token_type):
    return codec.verify(token, codec.key_for(token_type))


async def _register(manager, email="a@x.com"):
    return await manager.register(
        name="Ada", email=email, password=PASSWORD, date_of_birth=None
    )


class TestRegister:
    async def test_tokens_verify_and_share_the_new_user_id(self, manager, codec, store):
        pair = await _register(manager)

        access = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN)
        refresh = _decode(codec, pair.refresh_token, TokenType.REFRESH_TOKEN)
        assert access.user_id == refresh.user_id
        user = store.get_user(access.user_id)
        assert user.email == "a@x.com"
        assert user.verify is UserVerifyStatus.UNVERIFIED
        assert user.password != PASSWORD
        assert store.get_refresh_token(pair.refresh_token) is not None

    async def test_verify_token_is_stored_and_mailed(self, manager, codec, store, outbox):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id
        user = store.get_user(user_id)

        assert outbox.sent == [("verify", "a@x.com", user.email_verify_token)]
        claims = _decode(codec, user.email_verify_token, TokenType.EMAIL_VERIFY_TOKEN)
        assert claims.user_id == user_id

    async def test_duplicate_email_conflicts_and_keeps_first_user(self, manager, store):
        await _register(manager)
        original = store.get_user_by_email("a@x.com")

        with pytest.raises(ConflictError) as excinfo:
            await _register(manager, email="A@X.com")

        assert excinfo.value.field == "email"
        assert store.get_user_by_email("a@x.com") == original

    async def test_mail_failure_does_not_fail_registration(self, store, codec, passwords):
        manager = SessionManager(store, store, codec, passwords, email=RecordingEmail(fail=True))
        pair = await _register(manager)
        assert pair.access_token


class TestRefreshRotation:
    async def test_used_refresh_token_is_rejected_like_unknown(self, manager, codec):
        pair = await _register(manager)
        claims = _decode(codec, pair.refresh_token, TokenType.REFRESH_TOKEN)

        rotated = await manager.refresh(
            pair.refresh_token, user_id=claims.user_id, verify=claims.verify
        )
        assert rotated.refresh_token != pair.refresh_token

        with pytest.raises(AuthenticationError) as excinfo:
            await manager.refresh(pair.refresh_token, user_id=claims.user_id, verify=claims.verify)
        assert excinfo.value.reason == "used_refresh_token_or_not_exist"

    async def test_concurrent_refreshes_have_one_winner(self, manager, codec, store):
        pair = await _register(manager)
        claims = _decode(codec, pair.refresh_token, TokenType.REFRESH_TOKEN)

        results = await asyncio.gather(
            *(
                manager.refresh(pair.refresh_token, user_id=claims.user_id, verify=claims.verify)
                for _ in range(5)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, AuthenticationError)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert store.get_refresh_token(winners[0].refresh_token) is not None
        assert store.get_refresh_token(pair.refresh_token) is None

    async def test_refresh_keeps_verify_claim(self, manager, codec):
        pair = await _register(manager)
        claims = _decode(codec, pair.refresh_token, TokenType.REFRESH_TOKEN)
        rotated = await manager.refresh(
            pair.refresh_token, user_id=claims.user_id, verify=UserVerifyStatus.VERIFIED
        )
        access = _decode(codec, rotated.access_token, TokenType.ACCESS_TOKEN)
        assert access.verify is UserVerifyStatus.VERIFIED


class TestLogout:
    async def test_logout_then_fresh_login_issues_distinct_token(
        self, manager, codec, pipeline
    ):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id

        assert await manager.logout(pair.refresh_token) is True
        assert await manager.logout(pair.refresh_token) is False

        with pytest.raises(AuthenticationError):
            await pipeline.refresh_token_guard(
                RequestContext(body={"refresh_token": pair.refresh_token})
            )

        fresh = await manager.login(user_id, UserVerifyStatus.UNVERIFIED)
        assert fresh.refresh_token != pair.refresh_token


class TestEmailVerification:
    async def test_verify_email_promotes_and_clears_token(self, manager, codec, store):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id

        verified_pair = await manager.verify_email(user_id)

        user = store.get_user(user_id)
        assert user.verify is UserVerifyStatus.VERIFIED
        assert user.email_verify_token == ""
        access = _decode(codec, verified_pair.access_token, TokenType.ACCESS_TOKEN)
        assert access.verify is UserVerifyStatus.VERIFIED

    async def test_second_verification_stopped_by_guard(self, manager, codec, store, pipeline):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id
        token = store.get_user(user_id).email_verify_token
        ctx = RequestContext(body={"email_verify_token": token})

        ctx = await run_guards(
            ctx, pipeline.email_verify_token_guard, pipeline.email_not_verified_guard
        )
        await manager.verify_email(ctx.user.id)

        with pytest.raises(BadRequestError) as excinfo:
            await run_guards(
                RequestContext(body={"email_verify_token": token}),
                pipeline.email_verify_token_guard,
                pipeline.email_not_verified_guard,
            )
        assert excinfo.value.error_code == "email_already_verified"
        user = store.get_user(user_id)
        assert user.verify is UserVerifyStatus.VERIFIED
        assert user.email_verify_token == ""

    async def test_resend_supersedes_previous_token(self, manager, codec, store, outbox):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id
        first = store.get_user(user_id).email_verify_token

        await manager.resend_verify_email(user_id)

        second = store.get_user(user_id).email_verify_token
        assert second and second != first
        assert outbox.sent[-1] == ("verify", "a@x.com", second)


class TestPasswords:
    async def test_forgot_then_reset_clears_token(self, manager, codec, store, passwords, outbox):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id

        await manager.forgot_password(user_id)
        token = store.get_user(user_id).forgot_password_token
        assert outbox.sent[-1] == ("reset", "a@x.com", token)

        await manager.reset_password(user_id, "NewPass1!")

        user = store.get_user(user_id)
        assert user.forgot_password_token == ""
        assert passwords.verify(user.password, "NewPass1!")
        assert not passwords.verify(user.password, PASSWORD)

    async def test_change_password_rehashes(self, manager, codec, store, passwords):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id

        await manager.change_password(user_id, "Changed1!")

        assert passwords.verify(store.get_user(user_id).password, "Changed1!")

    async def test_reset_for_missing_user_is_not_found(self, manager):
        with pytest.raises(NotFoundError):
            await manager.reset_password("missing", "NewPass1!")


class TestFollow:
    async def _two_users(self, manager, codec):
        first = await _register(manager, email="a@x.com")
        second = await _register(manager, email="b@x.com")
        return (
            _decode(codec, first.access_token, TokenType.ACCESS_TOKEN).user_id,
            _decode(codec, second.access_token, TokenType.ACCESS_TOKEN).user_id,
        )

    async def test_follow_and_duplicate(self, manager, codec, store):
        a, b = await self._two_users(manager, codec)

        await manager.follow(a, b)
        assert store.get_follower(a, b) is not None

        with pytest.raises(ConflictError):
            await manager.follow(a, b)

    async def test_self_follow_rejected(self, manager, codec):
        a, _ = await self._two_users(manager, codec)
        with pytest.raises(BadRequestError) as excinfo:
            await manager.follow(a, a)
        assert excinfo.value.error_code == "cannot_follow_yourself"

    async def test_unfollow_reports_whether_edge_existed(self, manager, codec):
        a, b = await self._two_users(manager, codec)
        await manager.follow(a, b)

        assert await manager.unfollow(a, b) is True
        assert await manager.unfollow(a, b) is False


class TestProfile:
    async def test_update_me_rejects_non_profile_fields(self, manager, codec):
        pair = await _register(manager)
        user_id = _decode(codec, pair.access_token, TokenType.ACCESS_TOKEN).user_id

        with pytest.raises(ValidationError) as excinfo:
            await manager.update_me(user_id, {"password": "x", "bio": "hi"})
        assert set(excinfo.value.errors) == {"password"}

    async def test_update_me_and_lookup_by_username(self, manager, codec):
        first = await _register(manager, email="a@x.com")
        second = await _register(manager, email="b@x.com")
        a = _decode(codec, first.access_token, TokenType.ACCESS_TOKEN).user_id
        b = _decode(codec, second.access_token, TokenType.ACCESS_TOKEN).user_id

        profile = await manager.update_me(a, {"username": "ada_l", "bio": "hello"})
        assert profile["username"] == "ada_l"
        assert "password" not in profile

        fetched = await manager.get_profile("ada_l")
        assert fetched["id"] == a

        with pytest.raises(ConflictError) as excinfo:
            await manager.update_me(b, {"username": "ada_l"})
        assert excinfo.value.field == "username"

    async def test_unknown_username_is_not_found(self, manager):
        with pytest.raises(NotFoundError):
            await manager.get_profile("nobody")
