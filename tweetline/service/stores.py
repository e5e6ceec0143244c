from __future__ import annotations

import inspect
from typing import Any, Awaitable, Dict, Optional, Protocol, TypeVar, Union

from tweetline.storage.models import Follower, RefreshToken, User

T = TypeVar("T")


class UserDirectory(Protocol):
    def create_user(self, user: User) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def email_exists(self, email: str) -> bool: ...

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> Optional[User]: ...

    def add_follower(self, follower: Follower) -> Follower: ...

    def get_follower(self, user_id: str, followed_user_id: str) -> Optional[Follower]: ...

    def remove_follower(self, user_id: str, followed_user_id: str) -> bool: ...


class TokenStore(Protocol):
    """Refresh token records; presence is the sole proof a token is still live.

    The database backends answer synchronously and the Redis backend returns
    awaitables, so callers go through :func:`maybe_await`.
    """

    def put_refresh_token(
        self, record: RefreshToken
    ) -> Union[RefreshToken, Awaitable[RefreshToken]]: ...

    def get_refresh_token(
        self, token: str
    ) -> Union[Optional[RefreshToken], Awaitable[Optional[RefreshToken]]]: ...

    def delete_refresh_token(self, token: str) -> Union[bool, Awaitable[bool]]: ...


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = ["TokenStore", "UserDirectory", "maybe_await"]
