from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from tweetline.logging import get_logger
from tweetline.storage.errors import ConstraintViolation
from tweetline.storage.models import (
    UPDATABLE_USER_FIELDS,
    Follower,
    RefreshToken,
    User,
    UserVerifyStatus,
    utcnow,
)


class MemoryStore:
    """In-process user directory, refresh token store and follower edges.

    State is mirrored to ``<fs_root>/state/memory_store.json`` after every
    write so a restart picks up where the previous process stopped.
    """

    def __init__(self, fs_root: str = "/tmp/tweetline") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        self.followers: Dict[Tuple[str, str], Follower] = {}
        # RLock so helpers can re-acquire inside a locked section
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    # users
    def create_user(self, user: User) -> User:
        with self._data_lock:
            if any(existing.email == user.email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if user.username and self._username_taken(user.username):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            if user.id in self.users:
                raise ConstraintViolation("user id already exists", {"field": "id"})
            self.users[user.id] = replace(user)
            self._persist_state()
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        if not username:
            return None
        with self._data_lock:
            user = next(
                (u for u in self.users.values() if u.username == username), None
            )
            return replace(user) if user else None

    def email_exists(self, email: str) -> bool:
        with self._data_lock:
            return any(u.email == email for u in self.users.values())

    def _username_taken(self, username: str, *, exclude_id: Optional[str] = None) -> bool:
        return any(
            u.username == username and u.id != exclude_id for u in self.users.values()
        )

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> Optional[User]:
        unknown = set(patch) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"unsupported user fields: {', '.join(sorted(unknown))}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            username = patch.get("username")
            if username and self._username_taken(username, exclude_id=user_id):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            updated = replace(user, **patch, updated_at=utcnow())
            if "verify" in patch:
                updated.verify = UserVerifyStatus(patch["verify"])
            self.users[user_id] = updated
            self._persist_state()
            return replace(updated)

    # refresh tokens
    def put_refresh_token(self, record: RefreshToken) -> RefreshToken:
        with self._data_lock:
            if record.token not in self.refresh_tokens:
                self.refresh_tokens[record.token] = replace(record)
                self._persist_state()
            return replace(self.refresh_tokens[record.token])

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            record = self.refresh_tokens.get(token)
            if not record:
                return None
            if record.is_expired():
                self.refresh_tokens.pop(token, None)
                self._persist_state()
                return None
            return replace(record)

    def delete_refresh_token(self, token: str) -> bool:
        with self._data_lock:
            removed = self.refresh_tokens.pop(token, None)
            if removed is None:
                return False
            self._persist_state()
            return True

    # followers
    def add_follower(self, follower: Follower) -> Follower:
        key = (follower.user_id, follower.followed_user_id)
        with self._data_lock:
            if key in self.followers:
                raise ConstraintViolation(
                    "follower edge already exists", {"field": "followed_user_id"}
                )
            self.followers[key] = replace(follower)
            self._persist_state()
            return replace(follower)

    def get_follower(self, user_id: str, followed_user_id: str) -> Optional[Follower]:
        with self._data_lock:
            edge = self.followers.get((user_id, followed_user_id))
            return replace(edge) if edge else None

    def remove_follower(self, user_id: str, followed_user_id: str) -> bool:
        with self._data_lock:
            removed = self.followers.pop((user_id, followed_user_id), None)
            if removed is None:
                return False
            self._persist_state()
            return True

    def close(self) -> None:
        with self._data_lock:
            self._persist_state()

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "refresh_tokens": [
                self._serialize_refresh_token(r) for r in self.refresh_tokens.values()
            ],
            "followers": [
                {
                    "user_id": f.user_id,
                    "followed_user_id": f.followed_user_id,
                    "created_at": self._serialize_datetime(f.created_at),
                }
                for f in self.followers.values()
            ],
        }
        path = self._state_path()
        # Holds password hashes and live refresh tokens; owner-only, replaced whole
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=".memory_store_", suffix=".tmp")
            try:
                os.fchmod(fd, 0o600)
                os.write(fd, json.dumps(state, indent=2).encode("utf-8"))
            finally:
                os.close(fd)
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.refresh_tokens = {
            r["token"]: self._deserialize_refresh_token(r)
            for r in data.get("refresh_tokens", [])
        }
        self.followers = {}
        for entry in data.get("followers", []):
            edge = Follower(
                user_id=entry["user_id"],
                followed_user_id=entry["followed_user_id"],
                created_at=self._deserialize_datetime(entry.get("created_at")) or utcnow(),
            )
            self.followers[(edge.user_id, edge.followed_user_id)] = edge
        self.logger.debug(
            "memory_store_loaded",
            users=len(self.users),
            refresh_tokens=len(self.refresh_tokens),
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "password": user.password,
            "name": user.name,
            "date_of_birth": self._serialize_datetime(user.date_of_birth),
            "verify": int(user.verify),
            "email_verify_token": user.email_verify_token,
            "forgot_password_token": user.forgot_password_token,
            "bio": user.bio,
            "location": user.location,
            "website": user.website,
            "username": user.username,
            "avatar": user.avatar,
            "cover_photo": user.cover_photo,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            password=data["password"],
            name=data.get("name", ""),
            date_of_birth=self._deserialize_datetime(data.get("date_of_birth")),
            verify=UserVerifyStatus(data.get("verify", 0)),
            email_verify_token=data.get("email_verify_token", ""),
            forgot_password_token=data.get("forgot_password_token", ""),
            bio=data.get("bio", ""),
            location=data.get("location", ""),
            website=data.get("website", ""),
            username=data.get("username", ""),
            avatar=data.get("avatar", ""),
            cover_photo=data.get("cover_photo", ""),
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            updated_at=self._deserialize_datetime(data.get("updated_at")) or utcnow(),
        )

    def _serialize_refresh_token(self, record: RefreshToken) -> dict:
        return {
            "user_id": record.user_id,
            "token": record.token,
            "created_at": self._serialize_datetime(record.created_at),
            "expires_at": self._serialize_datetime(record.expires_at),
        }

    def _deserialize_refresh_token(self, data: dict) -> RefreshToken:
        return RefreshToken(
            user_id=str(data["user_id"]),
            token=data["token"],
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            expires_at=self._deserialize_datetime(data.get("expires_at")),
        )
