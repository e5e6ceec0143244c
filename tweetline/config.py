from __future__ import annotations

import os
import tempfile
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tweetline.logging import get_logger
from tweetline.service.tokens import SigningKey, generate_private_key_pem, public_key_pem
from tweetline.storage.models import TokenType

logger = get_logger(__name__)


class TokenStoreBackend(str, Enum):
    """Where refresh token records live."""

    STORE = "store"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


# Settings field prefix for each token type's key pair and TTL
_TOKEN_FIELD_PREFIX = {
    TokenType.ACCESS_TOKEN: "access_token",
    TokenType.REFRESH_TOKEN: "refresh_token",
    TokenType.FORGOT_PASSWORD_TOKEN: "forgot_password_token",
    TokenType.EMAIL_VERIFY_TOKEN: "email_verify_token",
}

_KEY_FIELDS = tuple(
    f"{prefix}_{half}_key"
    for prefix in _TOKEN_FIELD_PREFIX.values()
    for half in ("private", "public")
)


class Settings(BaseModel):
    """Runtime settings, built once at startup and passed to services."""

    database_url: str = env_field(
        "postgresql://localhost:5432/tweetline", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/tweetline", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    token_store: TokenStoreBackend = env_field(
        TokenStoreBackend.STORE,
        "TOKEN_STORE",
        description="Keep refresh tokens in the user store or in Redis",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors",
    )
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Tweetline", "EMAIL_FROM_NAME")
    # Token signing; PEM values may use literal "\n" escapes
    jwt_issuer: str = env_field("tweetline", "JWT_ISSUER")
    access_token_private_key: str | None = env_field(None, "ACCESS_TOKEN_PRIVATE_KEY")
    access_token_public_key: str | None = env_field(None, "ACCESS_TOKEN_PUBLIC_KEY")
    refresh_token_private_key: str | None = env_field(None, "REFRESH_TOKEN_PRIVATE_KEY")
    refresh_token_public_key: str | None = env_field(None, "REFRESH_TOKEN_PUBLIC_KEY")
    email_verify_token_private_key: str | None = env_field(
        None, "EMAIL_VERIFY_TOKEN_PRIVATE_KEY"
    )
    email_verify_token_public_key: str | None = env_field(
        None, "EMAIL_VERIFY_TOKEN_PUBLIC_KEY"
    )
    forgot_password_token_private_key: str | None = env_field(
        None, "FORGOT_PASSWORD_TOKEN_PRIVATE_KEY"
    )
    forgot_password_token_public_key: str | None = env_field(
        None, "FORGOT_PASSWORD_TOKEN_PUBLIC_KEY"
    )
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES", gt=0)
    refresh_token_ttl_minutes: int = env_field(
        100 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES", gt=0
    )
    email_verify_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "EMAIL_VERIFY_TOKEN_TTL_MINUTES", gt=0
    )
    forgot_password_token_ttl_minutes: int = env_field(
        60, "FORGOT_PASSWORD_TOKEN_TTL_MINUTES", gt=0
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("token_store")
    @classmethod
    def _validate_token_store(cls, value: TokenStoreBackend) -> TokenStoreBackend:
        return TokenStoreBackend(value)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator(*_KEY_FIELDS)
    @classmethod
    def _unescape_pem(cls, value: str | None) -> str | None:
        if not value:
            return None
        return value.replace("\\n", "\n").strip() + "\n"

    @model_validator(mode="after")
    def _ensure_signing_keys(self) -> "Settings":
        for token_type, prefix in _TOKEN_FIELD_PREFIX.items():
            private_attr = f"{prefix}_private_key"
            public_attr = f"{prefix}_public_key"
            if not getattr(self, private_attr):
                setattr(self, private_attr, self._load_or_generate_key(prefix))
            if not getattr(self, public_attr):
                setattr(self, public_attr, public_key_pem(getattr(self, private_attr)))
        return self

    def _load_or_generate_key(self, name: str) -> str:
        # Persist generated keys so tokens remain valid across restarts
        key_dir = Path(self.shared_fs_root) / "keys"
        key_path = key_dir / f"{name}.pem"
        try:
            key_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(key_dir, 0o700)
        except PermissionError:
            # Directory may already exist with different permissions (e.g., in container)
            pass

        if key_path.exists() and not key_path.is_symlink():
            try:
                persisted = key_path.read_text()
                if "PRIVATE KEY" in persisted:
                    return persisted
            except OSError as exc:
                logger.error("signing_key_read_failed", error=str(exc), path=str(key_path))

        generated = generate_private_key_pem()
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(key_dir), prefix=f".{name}_", suffix=".tmp")
            try:
                os.write(fd, generated.encode("ascii"))
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.replace(tmp_path, key_path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error("signing_key_persist_failed", error=str(exc), path=str(key_path))
            raise RuntimeError(
                f"Unable to persist {name} signing key; set {name.upper()}_PRIVATE_KEY "
                "or make SHARED_FS_ROOT writable"
            ) from exc
        logger.info("signing_key_generated", key_name=name, path=str(key_path))
        return generated

    def token_ttl(self, token_type: TokenType) -> timedelta:
        prefix = _TOKEN_FIELD_PREFIX[TokenType(token_type)]
        return timedelta(minutes=getattr(self, f"{prefix}_ttl_minutes"))

    def signing_key(self, token_type: TokenType) -> SigningKey:
        token_type = TokenType(token_type)
        prefix = _TOKEN_FIELD_PREFIX[token_type]
        return SigningKey(
            token_type=token_type,
            private_key=getattr(self, f"{prefix}_private_key"),
            public_key=getattr(self, f"{prefix}_public_key"),
            ttl=self.token_ttl(token_type),
            issuer=self.jwt_issuer,
        )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
