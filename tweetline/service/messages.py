"""User-facing message catalogue shared by guards, sessions and routes."""

from __future__ import annotations


class CommonMessages:
    VALIDATION_ERROR = "Validation error"
    INTERNAL_ERROR = "Internal server error"


class UserMessages:
    USER_NOT_FOUND = "User not found"
    NAME_REQUIRED = "Name is required"
    NAME_LENGTH = "Name must be between 1 and 100 characters"
    EMAIL_REQUIRED = "Email is required"
    EMAIL_INVALID = "Invalid email format"
    EMAIL_EXISTS = "Email already exists"
    USERNAME_EXISTS = "Username already exists"
    USERNAME_INVALID = (
        "Username must be 4-15 characters of letters, numbers and underscores, "
        "and not only numbers"
    )
    PASSWORD_INCORRECT = "Incorrect password"
    EMAIL_OR_PASSWORD_INCORRECT = "Email or password is incorrect"
    PASSWORD_REQUIRED = "Password is required"
    PASSWORD_LENGTH = "Password must be between 6 and 50 characters"
    PASSWORD_STRONG = (
        "Password must be at least 6 characters long and contain at least one "
        "lowercase letter, one uppercase letter, one number, and one symbol"
    )
    CONFIRM_PASSWORD_REQUIRED = "Confirm password is required"
    CONFIRM_PASSWORD_MISMATCH = "Passwords confirmation does not match password"
    OLD_PASSWORD_NOT_MATCH = "Old password does not match"
    DOB_REQUIRED = "Date of birth is required"
    DOB_IS_ISO8601 = "Date of birth must be a valid ISO 8601 date"
    ACCESS_TOKEN_REQUIRED = "Access token is required"
    ACCESS_TOKEN_INVALID = "Access token is invalid"
    REFRESH_TOKEN_REQUIRED = "Refresh token is required"
    REFRESH_TOKEN_INVALID = "Refresh token is invalid"
    EMAIL_VERIFY_TOKEN_REQUIRED = "Email verify token is required"
    EMAIL_VERIFY_TOKEN_INVALID = "Email verify token is invalid"
    EMAIL_ALREADY_VERIFIED_BEFORE = "Email is already verified before"
    EMAIL_VERIFY_SUCCESS = "Email verified successfully"
    RESEND_VERIFY_EMAIL_SUCCESS = "Resend verify email successfully"
    USED_REFRESH_TOKEN_OR_NOT_EXIST = "Used refresh token or not exists"
    USER_NOT_VERIFIED = "User not verified"
    LOGIN_SUCCESS = "Login successful"
    REGISTER_SUCCESS = "Register successful"
    LOGOUT_SUCCESS = "Logout successful"
    REFRESH_TOKEN_SUCCESS = "Refresh token successful"
    CHECK_EMAIL_TO_FORGOT_PASSWORD = "Please check your email to reset your password"
    FORGOT_PASSWORD_TOKEN_IS_REQUIRED = "Forgot password token is required"
    INVALID_FORGOT_PASSWORD_TOKEN = "Invalid forgot password token"
    VERIFY_FORGOT_PASSWORD_SUCCESS = "Verify forgot password successfully"
    RESET_PASSWORD_SUCCESS = "Reset password successfully"
    CHANGE_PASSWORD_SUCCESS = "Change password successfully"
    GET_ME_SUCCESS = "Get my profile successfully"
    UPDATE_ME_SUCCESS = "Update my profile successfully"
    GET_PROFILE_SUCCESS = "Get profile successfully"
    INVALID_USER_ID = "Invalid user id"
    FOLLOWED_USER_NOT_FOUND = "Followed user not found"
    FOLLOW_SUCCESS = "Follow successfully"
    FOLLOWED_BEFORE = "Followed before"
    CANNOT_FOLLOW_YOURSELF = "Cannot follow yourself"
    ALREADY_UNFOLLOWED = "Already unfollowed"
    UNFOLLOW_SUCCESS = "Unfollow successfully"


__all__ = ["CommonMessages", "UserMessages"]
