from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from tweetline.config import Settings, TokenStoreBackend, get_settings, reset_settings_cache
from tweetline.logging import get_logger
from tweetline.service.email import EmailService
from tweetline.service.passwords import PasswordService
from tweetline.service.pipeline import VerificationPipeline
from tweetline.service.sessions import SessionManager
from tweetline.service.tokens import TokenCodec
from tweetline.storage.memory import MemoryStore
from tweetline.storage.postgres import PostgresStore
from tweetline.storage.redis_cache import RedisTokenStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Assembles the stores and services the HTTP layer uses.

    Services receive their collaborators explicitly; this is the only place
    that decides which backends they get.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            token_store=self.settings.token_store.value,
            test_mode=self.settings.test_mode,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url, fs_root=self.settings.shared_fs_root
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.token_store: Union[MemoryStore, PostgresStore, RedisTokenStore] = self.store
        if self.settings.token_store == TokenStoreBackend.REDIS:
            token_store = RedisTokenStore(self.settings.redis_url)
            try:
                token_store.verify_connection()
            except Exception as exc:
                logger.error(
                    "runtime_redis_unavailable",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error=str(exc),
                )
                raise RuntimeError(
                    "TOKEN_STORE=redis requires a reachable Redis at REDIS_URL"
                ) from exc
            self.token_store = token_store

        self.codec = TokenCodec.from_settings(self.settings)
        self.passwords = PasswordService.fast() if self.settings.test_mode else PasswordService()
        self.email = EmailService.from_settings(self.settings)
        self.sessions = SessionManager(
            self.store,
            self.token_store,
            self.codec,
            self.passwords,
            email=self.email,
        )
        self.pipeline = VerificationPipeline(
            self.codec, self.store, self.token_store, self.passwords
        )
        logger.info("runtime_init_complete")

    async def close(self) -> None:
        if isinstance(self.token_store, RedisTokenStore):
            await self.token_store.close()
        self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the process Runtime; double-checked under a lock."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the Runtime from a fresh environment read (TEST_MODE only)."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
