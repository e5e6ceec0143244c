from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

from tweetline.logging import get_logger
from tweetline.storage.models import RefreshToken, utcnow

logger = get_logger(__name__)


class RedisTokenStore:
    """Refresh token records in Redis, expiring with the token itself.

    Keys are hashes of the token so raw bearer strings never appear in
    ``KEYS``/``MONITOR`` output. ``DEL`` reports how many keys it removed,
    which gives rotation its single-winner guarantee.
    """

    KEY_PREFIX = "auth:refresh"

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0, client=None):
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @staticmethod
    def _ttl_seconds(expires_at: datetime) -> int:
        """Seconds until ``expires_at``, clamped to at least 1 for Redis."""
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            expires_at = expires_at.astimezone(timezone.utc)
        return max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))

    def _key(self, token: str) -> str:
        digest = hashlib.sha256(token.encode()).hexdigest()
        return f"{self.KEY_PREFIX}:{digest}"

    def verify_connection(self) -> None:
        # Short-lived sync client so the async one is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put_refresh_token(self, record: RefreshToken) -> RefreshToken:
        payload = json.dumps(
            {
                "user_id": record.user_id,
                "token": record.token,
                "created_at": record.created_at.isoformat(),
                "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            }
        )
        ttl = self._ttl_seconds(record.expires_at) if record.expires_at else None
        # NX keeps an existing record untouched, making the insert idempotent
        await self.client.set(self._key(record.token), payload, ex=ttl, nx=True)
        return record

    async def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        raw = await self.client.get(self._key(token))
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("refresh_token_record_corrupt")
            return None
        expires_at = data.get("expires_at")
        return RefreshToken(
            user_id=str(data["user_id"]),
            token=data.get("token") or token,
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else utcnow(),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    async def delete_refresh_token(self, token: str) -> bool:
        removed = await self.client.delete(self._key(token))
        return bool(removed)

    async def close(self) -> None:
        await self.client.aclose()
