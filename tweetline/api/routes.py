from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Header, Path, Query
from pydantic import BaseModel

from tweetline.api.schemas import (
    ChangePasswordRequest,
    EmailVerifyRequest,
    Envelope,
    FollowRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UpdateMeRequest,
    UserProfileResponse,
    VerifyForgotPasswordRequest,
)
from tweetline.service.messages import UserMessages
from tweetline.service.pipeline import RequestContext, run_guards
from tweetline.service.runtime import get_runtime

router = APIRouter(prefix="/users", tags=["users"])


def _ok(message: str, result: Optional[BaseModel] = None) -> Envelope:
    data = MessageResponse(message=message, result=result).model_dump(mode="json")
    if result is None:
        data.pop("result")
    return Envelope(status="ok", data=data)


def _context(
    authorization: Optional[str] = None,
    body: Any = None,
    **path_params: str,
) -> RequestContext:
    return RequestContext(
        authorization=authorization,
        body=body.model_dump(exclude_none=True) if body is not None else {},
        path_params=path_params,
    )


@router.post("/login", response_model=Envelope)
async def login(body: LoginRequest):
    runtime = get_runtime()
    ctx = await run_guards(_context(body=body), runtime.pipeline.credential_guard)
    tokens = await runtime.sessions.login(ctx.user.id, ctx.user.verify)
    return _ok(UserMessages.LOGIN_SUCCESS, TokenPairResponse(**tokens.as_dict()))


@router.post("/register", response_model=Envelope, status_code=201)
async def register(body: RegisterRequest):
    runtime = get_runtime()
    await run_guards(_context(body=body), runtime.pipeline.email_available_guard)
    tokens = await runtime.sessions.register(
        name=body.name,
        email=body.email,
        password=body.password,
        date_of_birth=body.date_of_birth,
    )
    return _ok(UserMessages.REGISTER_SUCCESS, TokenPairResponse(**tokens.as_dict()))


@router.post("/logout", response_model=Envelope)
async def logout(body: RefreshTokenRequest, authorization: Optional[str] = Header(default=None)):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    await run_guards(
        _context(authorization, body),
        pipeline.access_token_guard,
        pipeline.refresh_token_guard,
    )
    await runtime.sessions.logout(body.refresh_token)
    return _ok(UserMessages.LOGOUT_SUCCESS)


@router.post("/refresh-token", response_model=Envelope)
async def refresh_token(body: RefreshTokenRequest):
    runtime = get_runtime()
    ctx = await run_guards(_context(body=body), runtime.pipeline.refresh_token_guard)
    claims = ctx.decoded_refresh_token
    tokens = await runtime.sessions.refresh(
        body.refresh_token, user_id=claims.user_id, verify=claims.verify
    )
    return _ok(UserMessages.REFRESH_TOKEN_SUCCESS, TokenPairResponse(**tokens.as_dict()))


async def _confirm_email(body: EmailVerifyRequest) -> Envelope:
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(body=body),
        pipeline.email_verify_token_guard,
        pipeline.email_not_verified_guard,
    )
    tokens = await runtime.sessions.verify_email(ctx.user.id)
    return _ok(UserMessages.EMAIL_VERIFY_SUCCESS, TokenPairResponse(**tokens.as_dict()))


@router.post("/verify-email", response_model=Envelope)
async def verify_email(body: EmailVerifyRequest):
    return await _confirm_email(body)


# Link sent in the verification email
@router.get("/verify-email", response_model=Envelope)
async def verify_email_link(
    email_verify_token: Optional[str] = Query(default=None, max_length=4096),
):
    return await _confirm_email(EmailVerifyRequest(email_verify_token=email_verify_token))


@router.post("/resend-verify-email", response_model=Envelope)
async def resend_verify_email(authorization: Optional[str] = Header(default=None)):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(authorization),
        pipeline.access_token_guard,
        pipeline.email_not_verified_guard,
    )
    await runtime.sessions.resend_verify_email(ctx.user.id)
    return _ok(UserMessages.RESEND_VERIFY_EMAIL_SUCCESS)


@router.post("/forgot-password", response_model=Envelope)
async def forgot_password(body: ForgotPasswordRequest):
    runtime = get_runtime()
    ctx = await run_guards(_context(body=body), runtime.pipeline.forgot_password_email_guard)
    await runtime.sessions.forgot_password(ctx.user.id)
    return _ok(UserMessages.CHECK_EMAIL_TO_FORGOT_PASSWORD)


@router.post("/verify-forgot-password", response_model=Envelope)
async def verify_forgot_password(body: VerifyForgotPasswordRequest):
    runtime = get_runtime()
    await run_guards(_context(body=body), runtime.pipeline.forgot_password_token_guard)
    return _ok(UserMessages.VERIFY_FORGOT_PASSWORD_SUCCESS)


# Link sent in the password reset email; the new password is then POSTed
# to /users/reset-password with the same token
@router.get("/verify-forgot-password", response_model=Envelope)
async def verify_forgot_password_link(
    forgot_password_token: Optional[str] = Query(default=None, max_length=4096),
):
    return await verify_forgot_password(
        VerifyForgotPasswordRequest(forgot_password_token=forgot_password_token)
    )


@router.post("/reset-password", response_model=Envelope)
async def reset_password(body: ResetPasswordRequest):
    runtime = get_runtime()
    ctx = await run_guards(_context(body=body), runtime.pipeline.forgot_password_token_guard)
    await runtime.sessions.reset_password(ctx.user.id, body.password)
    return _ok(UserMessages.RESET_PASSWORD_SUCCESS)


@router.get("/me", response_model=Envelope)
async def get_me(authorization: Optional[str] = Header(default=None)):
    runtime = get_runtime()
    ctx = await run_guards(_context(authorization), runtime.pipeline.access_token_guard)
    profile = await runtime.sessions.get_me(ctx.decoded_authorization.user_id)
    return _ok(UserMessages.GET_ME_SUCCESS, UserProfileResponse(**profile))


@router.patch("/me", response_model=Envelope)
async def update_me(body: UpdateMeRequest, authorization: Optional[str] = Header(default=None)):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(authorization),
        pipeline.access_token_guard,
        pipeline.verified_user_guard,
    )
    profile = await runtime.sessions.update_me(ctx.decoded_authorization.user_id, body.patch())
    return _ok(UserMessages.UPDATE_ME_SUCCESS, UserProfileResponse(**profile))


@router.post("/follow", response_model=Envelope)
async def follow(body: FollowRequest, authorization: Optional[str] = Header(default=None)):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(authorization, body),
        pipeline.access_token_guard,
        pipeline.verified_user_guard,
        pipeline.target_user_guard,
    )
    await runtime.sessions.follow(ctx.decoded_authorization.user_id, ctx.target_user.id)
    return _ok(UserMessages.FOLLOW_SUCCESS)


@router.delete("/follow/{user_id}", response_model=Envelope)
async def unfollow(
    user_id: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(default=None),
):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(authorization, user_id=user_id),
        pipeline.access_token_guard,
        pipeline.verified_user_guard,
        pipeline.target_user_guard,
    )
    removed = await runtime.sessions.unfollow(ctx.decoded_authorization.user_id, ctx.target_user.id)
    return _ok(UserMessages.UNFOLLOW_SUCCESS if removed else UserMessages.ALREADY_UNFOLLOWED)


@router.put("/change-password", response_model=Envelope)
async def change_password(
    body: ChangePasswordRequest, authorization: Optional[str] = Header(default=None)
):
    runtime = get_runtime()
    pipeline = runtime.pipeline
    ctx = await run_guards(
        _context(authorization, body),
        pipeline.access_token_guard,
        pipeline.verified_user_guard,
        pipeline.old_password_guard,
    )
    await runtime.sessions.change_password(ctx.user.id, body.password)
    return _ok(UserMessages.CHANGE_PASSWORD_SUCCESS)


# Declared last so it cannot shadow the fixed /users/* paths above
@router.get("/{username}", response_model=Envelope)
async def get_profile(username: str = Path(..., max_length=64)):
    runtime = get_runtime()
    profile = await runtime.sessions.get_profile(username)
    return _ok(UserMessages.GET_PROFILE_SUCCESS, UserProfileResponse(**profile))
