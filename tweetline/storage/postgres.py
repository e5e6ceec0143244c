from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

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

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        password TEXT NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        date_of_birth TIMESTAMPTZ,
        verify SMALLINT NOT NULL DEFAULT 0,
        email_verify_token TEXT NOT NULL DEFAULT '',
        forgot_password_token TEXT NOT NULL DEFAULT '',
        bio TEXT NOT NULL DEFAULT '',
        location TEXT NOT NULL DEFAULT '',
        website TEXT NOT NULL DEFAULT '',
        username TEXT NOT NULL DEFAULT '',
        avatar TEXT NOT NULL DEFAULT '',
        cover_photo TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_key ON app_user (email)",
    # Empty username means "not chosen yet" and may repeat
    """
    CREATE UNIQUE INDEX IF NOT EXISTS app_user_username_key
        ON app_user (username) WHERE username <> ''
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES app_user (id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        expires_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS follower (
        user_id TEXT NOT NULL REFERENCES app_user (id) ON DELETE CASCADE,
        followed_user_id TEXT NOT NULL REFERENCES app_user (id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, followed_user_id),
        CHECK (user_id <> followed_user_id)
    )
    """,
)


def _unique_field(exc: errors.UniqueViolation) -> str:
    constraint = getattr(exc.diag, "constraint_name", None) or ""
    return "username" if "username" in constraint else "email"


class PostgresStore:
    """Postgres-backed user directory, refresh token store and follower edges.

    Every method runs a single statement in its own pooled connection, so
    each call is atomic on its own; refresh token deletion reports whether
    a row was actually removed via ``DELETE ... RETURNING``.
    """

    def __init__(self, dsn: str, fs_root: str) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            password=row["password"],
            name=row.get("name") or "",
            date_of_birth=row.get("date_of_birth"),
            verify=UserVerifyStatus(row.get("verify") or 0),
            email_verify_token=row.get("email_verify_token") or "",
            forgot_password_token=row.get("forgot_password_token") or "",
            bio=row.get("bio") or "",
            location=row.get("location") or "",
            website=row.get("website") or "",
            username=row.get("username") or "",
            avatar=row.get("avatar") or "",
            cover_photo=row.get("cover_photo") or "",
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    # users
    def create_user(self, user: User) -> User:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (
                        id, email, password, name, date_of_birth, verify,
                        email_verify_token, forgot_password_token, bio, location,
                        website, username, avatar, cover_photo, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.email,
                        user.password,
                        user.name,
                        user.date_of_birth,
                        int(user.verify),
                        user.email_verify_token,
                        user.forgot_password_token,
                        user.bio,
                        user.location,
                        user.website,
                        user.username,
                        user.avatar,
                        user.cover_photo,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return user

    def _get_user_where(self, column: str, value: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM app_user WHERE {column} = %s", (value,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get_user_where("id", user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._get_user_where("email", email)

    def get_user_by_username(self, username: str) -> Optional[User]:
        if not username:
            return None
        return self._get_user_where("username", username)

    def email_exists(self, email: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 AS found FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return bool(row)

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> Optional[User]:
        unknown = set(patch) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"unsupported user fields: {', '.join(sorted(unknown))}")
        # Column names come from the allow-list above, values stay parameterized
        columns = sorted(patch)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        if assignments:
            assignments += ", "
        values = [
            int(patch[column]) if column == "verify" else patch[column] for column in columns
        ]
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE app_user SET {assignments}updated_at = now() WHERE id = %s RETURNING *",
                    (*values, user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._row_to_user(row) if row else None

    # refresh tokens
    def put_refresh_token(self, record: RefreshToken) -> RefreshToken:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO refresh_token (token, user_id, created_at, expires_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (token) DO NOTHING
                    """,
                    (record.token, record.user_id, record.created_at, record.expires_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("refresh token user missing", {"user_id": record.user_id})
        return record

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE token = %s", (token,)
            ).fetchone()
            if not row:
                return None
            record = RefreshToken(
                user_id=str(row["user_id"]),
                token=row["token"],
                created_at=row.get("created_at") or utcnow(),
                expires_at=row.get("expires_at"),
            )
            if record.is_expired():
                conn.execute("DELETE FROM refresh_token WHERE token = %s", (token,))
                return None
        return record

    def delete_refresh_token(self, token: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "DELETE FROM refresh_token WHERE token = %s RETURNING token", (token,)
            ).fetchone()
        return row is not None

    # followers
    def add_follower(self, follower: Follower) -> Follower:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO follower (user_id, followed_user_id, created_at)
                    VALUES (%s, %s, %s)
                    """,
                    (follower.user_id, follower.followed_user_id, follower.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "follower edge already exists", {"field": "followed_user_id"}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("followed user missing", {"field": "followed_user_id"})
        return follower

    def get_follower(self, user_id: str, followed_user_id: str) -> Optional[Follower]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM follower WHERE user_id = %s AND followed_user_id = %s",
                (user_id, followed_user_id),
            ).fetchone()
        if not row:
            return None
        return Follower(
            user_id=str(row["user_id"]),
            followed_user_id=str(row["followed_user_id"]),
            created_at=row.get("created_at") or utcnow(),
        )

    def remove_follower(self, user_id: str, followed_user_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                DELETE FROM follower WHERE user_id = %s AND followed_user_id = %s
                RETURNING user_id
                """,
                (user_id, followed_user_id),
            ).fetchone()
        return row is not None
